"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None
    display_name: str = ""
    provider: str = ""
    quality_score: float = 8.0
    speed_score: float = 7.0
    cost_per_token: float = 0.000001
    capabilities: list[str] = field(default_factory=list)
    is_latest: bool = False
    is_newest: bool = False


@dataclass
class OrchestratorConfig:
    max_iterations: int = 100
    action_models: int = 3
    consensus_max_models: int = 8
    consensus_min_models: int = 4
    continue_threshold: float = 0.6
    completion_threshold: float = 85.0
    conversation_memory_limit: int = 50
    conversation_memory_keep: int = 30
    max_sub_agents: int = 3
    discussion_max_turns: int = 6
    hierarchy_log_interval: int = 3
    newest_models: list[str] = field(default_factory=list)


@dataclass
class RoundsConfig:
    min_rounds: int = 2
    max_rounds: int = 20
    optimal_rounds: int = 5
    redundancy_threshold: float = 0.7
    progress_threshold: float = 0.3
    consensus_threshold: float = 0.8
    depth_requirement: str = "adaptive"


@dataclass
class SelectorConfig:
    min_agents: int = 2
    max_agents: int = 8
    optimal_agents: int = 4
    expertise_weight: float = 0.4
    performance_weight: float = 0.3
    diversity_weight: float = 0.3


@dataclass
class TiersConfig:
    max_concurrent_premium: int = 3
    max_concurrent_per_model: int = 5
    free_providers: list[str] = field(default_factory=lambda: ["huggingface", "ollama"])


@dataclass
class MemoryConfig:
    max_short_term: int = 100
    max_long_term: int = 10000
    max_episodic: int = 500
    max_working: int = 20
    consolidation_interval_sec: float = 300.0


@dataclass
class DefaultsConfig:
    output_dir: Path = Path("./output")
    memory_dir: Path = Path("./memory")
    mode: str = "autonomous"
    seed: int | None = None


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    rounds: RoundsConfig = field(default_factory=RoundsConfig)
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    tiers: TiersConfig = field(default_factory=TiersConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    available_providers: set[str] = field(default_factory=set)


def _section(cls: type, raw: dict[str, Any] | None) -> Any:
    """Build a settings dataclass from a yaml mapping, ignoring unknown keys."""
    known = {f.name for f in dataclasses.fields(cls)}
    values = {k: v for k, v in (raw or {}).items() if k in known}
    unknown = set(raw or {}) - known
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)))
    return cls(**values)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise; callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    defaults_raw = raw.get("defaults") or {}
    seed = defaults_raw.get("seed")
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        memory_dir=Path(defaults_raw.get("memory_dir", "./memory")),
        mode=str(defaults_raw.get("mode", "autonomous")),
        seed=int(seed) if seed is not None else None,
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for model_id, model_raw in (raw.get("models") or {}).items():
        model_cfg = ModelConfig(
            name=model_id,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
            display_name=str(model_raw.get("name", model_id)),
            provider=str(model_raw.get("provider", model_raw["sdk"])),
            quality_score=float(model_raw.get("quality_score", 8.0)),
            speed_score=float(model_raw.get("speed_score", 7.0)),
            cost_per_token=float(model_raw.get("cost_per_token", 0.000001)),
            capabilities=list(model_raw.get("capabilities", [])),
            is_latest=bool(model_raw.get("is_latest", False)),
            is_newest=bool(model_raw.get("is_newest", False)),
        )
        models[model_id] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(model_id)
            logger.info("Model available: %s", model_id)
        else:
            logger.info(
                "Model skipped (no API key): %s (set %s in .env)",
                model_id,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        orchestrator=_section(OrchestratorConfig, raw.get("orchestrator")),
        rounds=_section(RoundsConfig, raw.get("rounds")),
        selector=_section(SelectorConfig, raw.get("selector")),
        tiers=_section(TiersConfig, raw.get("tiers")),
        memory=_section(MemoryConfig, raw.get("memory")),
        available_providers=available_providers,
    )
