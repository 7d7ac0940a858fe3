"""Tests for config/config_loader.py."""

import logging
from pathlib import Path

import pytest
import yaml

from config.config_loader import (
    AppConfig,
    ModelConfig,
    OrchestratorConfig,
    RoundsConfig,
    load_config,
)


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    settings = {
        "defaults": {
            "output_dir": "./output",
            "memory_dir": "./memory",
            "mode": "fixed",
            "seed": 42,
        },
        "orchestrator": {
            "max_iterations": 12,
            "newest_models": ["claude-opus"],
        },
        "rounds": {"max_rounds": 8},
        "models": {
            "claude-opus": {
                "name": "Claude Opus",
                "provider": "anthropic",
                "sdk": "anthropic",
                "model": "claude-opus-4-1",
                "api_key_env": "TEST_CLAUDE_KEY",
                "timeout_sec": 120,
                "max_tokens": 8192,
                "quality_score": 10,
                "capabilities": ["reasoning"],
                "is_newest": True,
            },
            "llama": {
                "sdk": "openai_compatible",
                "model": "llama3",
                "api_key_env": "TEST_OLLAMA_KEY",
                "timeout_sec": 60,
                "max_tokens": 2048,
                "base_url": "http://localhost:11434/v1",
            },
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    assert isinstance(load_config(minimal_settings), AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.mode == "fixed"
    assert config.defaults.seed == 42
    assert isinstance(config.defaults.output_dir, Path)
    assert isinstance(config.defaults.memory_dir, Path)


def test_load_config_sections_merge_with_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.orchestrator.max_iterations == 12
    assert config.orchestrator.newest_models == ["claude-opus"]
    assert config.orchestrator.continue_threshold == OrchestratorConfig().continue_threshold
    assert config.rounds.max_rounds == 8
    assert config.rounds.min_rounds == RoundsConfig().min_rounds
    assert config.selector.max_agents == 8
    assert config.memory.max_working == 20


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    opus = config.models["claude-opus"]
    assert isinstance(opus, ModelConfig)
    assert opus.display_name == "Claude Opus"
    assert opus.quality_score == 10.0
    assert opus.capabilities == ["reasoning"]
    assert opus.is_newest is True


def test_model_descriptor_fields_default(minimal_settings):
    llama = load_config(minimal_settings).models["llama"]
    assert llama.display_name == "llama"
    assert llama.provider == "openai_compatible"
    assert llama.base_url == "http://localhost:11434/v1"
    assert llama.speed_score == 7.0


def test_model_config_base_url_optional(minimal_settings):
    assert load_config(minimal_settings).models["claude-opus"].base_url is None


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    monkeypatch.delenv("TEST_OLLAMA_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.available_providers == {"claude-opus"}


def test_load_config_blank_key_not_available(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "   ")
    config = load_config(minimal_settings)
    assert "claude-opus" not in config.available_providers


def test_unknown_section_keys_warn(tmp_path: Path, caplog):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump({"rounds": {"max_rounds": 4, "max_round": 5}}), encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="config.config_loader"):
        config = load_config(path)
    assert config.rounds.max_rounds == 4
    assert "max_round" in caplog.text


def test_empty_settings_file(tmp_path: Path):
    path = tmp_path / "settings.yaml"
    path.write_text("", encoding="utf-8")
    config = load_config(path)
    assert config.models == {}
    assert config.defaults.seed is None


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_shipped_settings_load():
    config = load_config()
    assert "claude-opus" in config.models
    assert config.orchestrator.max_iterations == 100
    assert config.tiers.free_providers == ["huggingface", "ollama"]
