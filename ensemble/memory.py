"""Per-agent layered memory: short-term, long-term, episodic, semantic, working, procedural.

Items move between layers on overflow and during consolidation; long-term and
episodic items decay with age and disuse and long-term items are forgotten once
their retention drops below FORGET_THRESHOLD.
"""

import dataclasses
import logging
import math
import time
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from config.config_loader import MemoryConfig
from ensemble.models import MemoryItem, MemoryKind, MemoryMetadata
from ensemble.storage import InMemoryStore, MemoryStore, StorageError
from ensemble.text import TextAnalyzer, as_text

logger = logging.getLogger(__name__)

DAY_SEC = 86400.0
FORGET_THRESHOLD = 0.1
DECAYED_THRESHOLD = 0.3
MERGE_SIMILARITY = 0.8
ASSOCIATION_SIMILARITY = 0.5
ASSOCIATION_WINDOW = 5
REINFORCE_AFTER = 5

_IMPORTANT_TYPES = ("decision", "error", "success")


def retention_score(age: float, access_recency: float, access_count: int, importance: float) -> float:
    """Forgetting-curve retention in [0, 1]. Ages are in seconds."""
    age_factor = math.exp(-max(age, 0.0) / (30 * DAY_SEC))
    access_factor = math.exp(-max(access_recency, 0.0) / (7 * DAY_SEC))
    frequency_factor = min(max(access_count, 0) / 10, 1.0)
    importance_factor = min(max(importance, 0.0), 1.0)
    score = age_factor * 0.3 + access_factor * 0.3 + frequency_factor * 0.2 + importance_factor * 0.2
    return min(max(score, 0.0), 1.0)


def episodic_decay(age: float) -> float:
    return math.exp(-max(age, 0.0) / (14 * DAY_SEC))


@dataclass
class Procedure:
    steps: list[MemoryItem] = field(default_factory=list)
    success_rate: float = 1.0
    usage_count: int = 0


@dataclass
class MemoryIndexes:
    temporal: dict[int, list[str]] = field(default_factory=dict)
    semantic: dict[str, list[str]] = field(default_factory=dict)
    importance: dict[int, list[str]] = field(default_factory=dict)
    association: dict[str, set[str]] = field(default_factory=dict)


@dataclass
class MemoryStats:
    stores: int = 0
    recalls: int = 0
    consolidations: int = 0
    promotions: int = 0
    merged: int = 0
    forgotten: int = 0
    persist_failures: int = 0
    last_accessed: float | None = None


@dataclass
class ScoredMemory:
    item: MemoryItem
    relevance: float


@dataclass
class RecallResult:
    found: bool
    memories: list[ScoredMemory] = field(default_factory=list)
    grouped: dict[str, list[MemoryItem]] = field(default_factory=dict)
    confidence: float = 0.0
    synthesis: dict[str, Any] = field(default_factory=dict)

    @property
    def top(self) -> MemoryItem | None:
        return self.memories[0].item if self.memories else None


def _item_to_dict(item: MemoryItem) -> dict[str, Any]:
    data = dataclasses.asdict(item)
    data["kind"] = item.kind.value
    return data


def _item_from_dict(data: dict[str, Any]) -> MemoryItem:
    return MemoryItem(
        id=data["id"],
        kind=MemoryKind(data["kind"]),
        content=data["content"],
        metadata=MemoryMetadata(**data["metadata"]),
    )


class AgentMemoryBank:
    """Layered memory store owned by a single agent."""

    def __init__(
        self,
        agent_id: str,
        config: MemoryConfig | None = None,
        store: MemoryStore | None = None,
        analyzer: TextAnalyzer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.agent_id = agent_id
        self.config = config or MemoryConfig()
        self._store = store or InMemoryStore()
        self._text = analyzer or TextAnalyzer()
        self._clock = clock

        self.short_term: list[MemoryItem] = []
        self.long_term: dict[str, MemoryItem] = {}
        self.episodic: list[MemoryItem] = []
        self.semantic: dict[str, list[MemoryItem]] = {}
        self.working: list[MemoryItem] = []
        self.procedural: dict[str, Procedure] = {}

        self.indexes = MemoryIndexes()
        self.stats = MemoryStats()
        self.patterns: Counter[str] = Counter()
        self.last_consolidation = clock()

        self._handlers: dict[MemoryKind, Callable[[MemoryItem], None]] = {
            MemoryKind.SHORT_TERM: self._store_short_term,
            MemoryKind.LONG_TERM: self._store_long_term,
            MemoryKind.EPISODIC: self._store_episodic,
            MemoryKind.SEMANTIC: self._store_semantic,
            MemoryKind.WORKING: self._store_working,
            MemoryKind.PROCEDURAL: self._store_procedural,
        }

    # ------------------------------------------------------------------ store

    def importance_of(self, content: Any, metadata: dict[str, Any]) -> float:
        importance = 0.5
        if metadata.get("source") == "user":
            importance += 0.2
        if metadata.get("type") in _IMPORTANT_TYPES:
            importance += 0.15
        if self._text.has_important_keyword(as_text(content)):
            importance += 0.1
        return min(importance, 1.0)

    async def store(self, kind: MemoryKind | str, content: Any, metadata: dict[str, Any] | None = None) -> str:
        """Store content in one memory layer and return the new item id."""
        metadata = metadata or {}
        try:
            kind = MemoryKind(kind)
        except ValueError:
            logger.debug("Unknown memory kind %r for %s, using short-term", kind, self.agent_id)
            kind = MemoryKind.SHORT_TERM

        explicit = metadata.get("importance")
        if explicit is None:
            importance = self.importance_of(content, metadata)
        else:
            importance = min(max(float(explicit), 0.0), 1.0)

        now = self._clock()
        item = MemoryItem(
            id=uuid.uuid4().hex,
            kind=kind,
            content=content,
            metadata=MemoryMetadata(
                timestamp=now,
                importance=importance,
                associations=list(metadata.get("associations", [])),
                source=str(metadata.get("source", "unknown")),
                type=metadata.get("type"),
                confidence=float(metadata.get("confidence", 0.8)),
                tags=list(metadata.get("tags", [])),
            ),
        )

        self._handlers[kind](item)
        self._index(item)
        self.stats.stores += 1
        self.stats.last_accessed = now

        if self.should_consolidate():
            await self.consolidate()
        return item.id

    def _store_short_term(self, item: MemoryItem) -> None:
        self.short_term.append(item)
        if len(self.short_term) > self.config.max_short_term:
            oldest = self.short_term.pop(0)
            if oldest.metadata.importance > 0.5:
                self._promote(oldest)

    def _store_long_term(self, item: MemoryItem) -> None:
        self.long_term[item.id] = item
        if len(self.long_term) > self.config.max_long_term:
            self.apply_forgetting_curve()
            overflow = len(self.long_term) - self.config.max_long_term
            if overflow > 0:
                weakest = sorted(self.long_term.values(), key=lambda m: (m.metadata.decay, m.metadata.importance))
                for victim in weakest[:overflow]:
                    del self.long_term[victim.id]
                self.stats.forgotten += overflow

    def _store_episodic(self, item: MemoryItem) -> None:
        self.episodic.append(item)
        now = self._clock()
        self.episodic.sort(
            key=lambda m: m.metadata.importance / (now - m.metadata.timestamp + 1),
            reverse=True,
        )
        del self.episodic[self.config.max_episodic:]

    def _store_semantic(self, item: MemoryItem) -> None:
        concept = self._text.extract_concept(as_text(item.content))
        self.semantic.setdefault(concept, []).append(item)
        related = self.related_concepts(concept)
        for other in related:
            self.indexes.association.setdefault(concept, set()).add(other)
            self.indexes.association.setdefault(other, set()).add(concept)
        item.metadata.associations.extend(r for r in related if r not in item.metadata.associations)

    def _store_working(self, item: MemoryItem) -> None:
        self.working.append(item)
        if len(self.working) > self.config.max_working:
            spilled = self.working.pop(0)
            if spilled.metadata.importance > 0.3:
                spilled.kind = MemoryKind.SHORT_TERM
                self._store_short_term(spilled)

    def _store_procedural(self, item: MemoryItem) -> None:
        name = self._text.procedure_name(as_text(item.content))
        procedure = self.procedural.setdefault(name, Procedure())
        procedure.steps.append(item)
        procedure.usage_count += 1

    def _promote(self, item: MemoryItem) -> None:
        if item.metadata.promoted:
            self.long_term[item.id] = item
            return
        item.metadata.promoted = True
        item.metadata.promotion_time = self._clock()
        self.stats.promotions += 1
        self._store_long_term(item)

    # ---------------------------------------------------------------- indexes

    def _index(self, item: MemoryItem) -> None:
        hour = int(item.metadata.timestamp // 3600)
        self.indexes.temporal.setdefault(hour, []).append(item.id)
        for concept in self._text.query_concepts(as_text(item.content)):
            self.indexes.semantic.setdefault(concept, []).append(item.id)
        bucket = int(item.metadata.importance * 10)
        self.indexes.importance.setdefault(bucket, []).append(item.id)

    def related_concepts(self, concept: str, limit: int = 5) -> list[str]:
        related: list[str] = list(self.indexes.association.get(concept, ()))
        for other in self.semantic:
            if other != concept and self._text.concept_similarity(other, concept) > 0.5:
                related.append(other)
        return list(dict.fromkeys(related))[:limit]

    def _rebuild_indexes(self) -> None:
        self.indexes = MemoryIndexes()
        for item in self.all_items():
            self._index(item)
        for concept in list(self.semantic):
            for other in self.related_concepts(concept):
                self.indexes.association.setdefault(concept, set()).add(other)
                self.indexes.association.setdefault(other, set()).add(concept)

    def all_items(self) -> list[MemoryItem]:
        """Every distinct item across all layers (an item can sit in two layers)."""
        seen: dict[str, MemoryItem] = {}
        for item in self.short_term:
            seen.setdefault(item.id, item)
        for item in self.long_term.values():
            seen.setdefault(item.id, item)
        for item in self.episodic:
            seen.setdefault(item.id, item)
        for items in self.semantic.values():
            for item in items:
                seen.setdefault(item.id, item)
        for item in self.working:
            seen.setdefault(item.id, item)
        for procedure in self.procedural.values():
            for item in procedure.steps:
                seen.setdefault(item.id, item)
        return list(seen.values())

    # --------------------------------------------------------------- retrieve

    def _search(self, kind: MemoryKind, query: str) -> list[MemoryItem]:
        if kind is MemoryKind.SHORT_TERM:
            pool = self.short_term
        elif kind is MemoryKind.LONG_TERM:
            pool = list(self.long_term.values())
        elif kind is MemoryKind.EPISODIC:
            pool = self.episodic
        elif kind is MemoryKind.WORKING:
            pool = self.working
        elif kind is MemoryKind.SEMANTIC:
            return self._search_semantic(query)
        else:
            lowered = query.lower()
            return [
                step
                for name, procedure in self.procedural.items()
                if lowered in name or name in lowered
                for step in procedure.steps
            ]
        return [m for m in pool if self._text.matches_query(as_text(m.content), query, m.metadata.associations)]

    def _search_semantic(self, query: str) -> list[MemoryItem]:
        results: list[MemoryItem] = []
        by_id: dict[str, MemoryItem] | None = None
        for concept in self._text.query_concepts(query):
            for name in [concept, *self.related_concepts(concept)]:
                results.extend(self.semantic.get(name, []))
            linked = self.indexes.semantic.get(concept)
            if linked:
                if by_id is None:
                    by_id = {m.id: m for m in self.all_items() if m.kind is not MemoryKind.WORKING}
                results.extend(by_id[i] for i in linked if i in by_id)
        return results

    def _relevance(self, item: MemoryItem, query: str, now: float) -> float:
        text = as_text(item.content)
        relevance = 0.5 if query.lower() in text.lower() else 0.0
        relevance += self._text.word_overlap_ratio(query, text) * 0.3
        relevance += math.exp(-max(now - item.metadata.timestamp, 0.0) / (7 * DAY_SEC)) * 0.2
        return min(relevance, 1.0)

    async def retrieve(
        self,
        query: str,
        kinds: list[MemoryKind] | None = None,
        limit: int = 10,
        min_importance: float = 0.0,
        max_age: float | None = None,
        include_decayed: bool = False,
    ) -> RecallResult:
        """Search the requested layers and return the best matches.

        Returned items are reinforced: access count and last-access time are
        updated, and from the fifth access on importance grows by 10%.
        """
        now = self._clock()
        self.stats.recalls += 1
        self.stats.last_accessed = now

        if kinds is None:
            kinds = [
                MemoryKind.SHORT_TERM,
                MemoryKind.LONG_TERM,
                MemoryKind.EPISODIC,
                MemoryKind.SEMANTIC,
                MemoryKind.PROCEDURAL,
            ]

        candidates: dict[str, MemoryItem] = {}
        for kind in kinds:
            for item in self._search(MemoryKind(kind), query):
                candidates.setdefault(item.id, item)

        filtered = [
            m
            for m in candidates.values()
            if m.metadata.importance >= min_importance
            and (max_age is None or m.metadata.timestamp >= now - max_age)
            and (include_decayed or m.metadata.decay > DECAYED_THRESHOLD)
        ]

        scored = [ScoredMemory(m, self._relevance(m, query, now)) for m in filtered]
        scored.sort(key=lambda s: s.relevance * s.item.metadata.importance * s.item.metadata.decay, reverse=True)
        top = scored[:limit]

        for entry in top:
            meta = entry.item.metadata
            meta.access_count += 1
            meta.last_accessed = now
            if meta.access_count >= REINFORCE_AFTER:
                meta.importance = min(meta.importance * 1.1, 1.0)

        return self._synthesize(top)

    def _synthesize(self, memories: list[ScoredMemory]) -> RecallResult:
        if not memories:
            return RecallResult(found=False)

        grouped: dict[str, list[MemoryItem]] = {"facts": [], "experiences": [], "procedures": [], "concepts": []}
        for entry in memories:
            if entry.item.kind is MemoryKind.SEMANTIC:
                grouped["concepts"].append(entry.item)
            elif entry.item.kind is MemoryKind.EPISODIC:
                grouped["experiences"].append(entry.item)
            elif entry.item.kind is MemoryKind.PROCEDURAL:
                grouped["procedures"].append(entry.item)
            else:
                grouped["facts"].append(entry.item)

        associations = [a for entry in memories for a in entry.item.metadata.associations]
        best = memories[0]
        return RecallResult(
            found=True,
            memories=memories,
            grouped=grouped,
            confidence=best.relevance * best.item.metadata.confidence,
            synthesis={
                "main_content": best.item.content,
                "supporting_content": [m.item.content for m in memories[1:4]],
                "related_concepts": list(dict.fromkeys(associations))[:5],
                "confidence": best.relevance,
                "sources": len(memories),
            },
        )

    # ---------------------------------------------------------- consolidation

    def should_consolidate(self) -> bool:
        return (
            len(self.short_term) >= self.config.max_short_term * 0.8
            or len(self.working) >= self.config.max_working * 0.9
            or self._clock() - self.last_consolidation >= self.config.consolidation_interval_sec
        )

    async def consolidate(self) -> None:
        logger.debug("Consolidating memory for %s", self.agent_id)
        self.stats.consolidations += 1

        self.patterns = self._identify_patterns(self.short_term)

        for item in list(self.short_term):
            if not item.metadata.promoted and (item.metadata.importance > 0.7 or item.metadata.access_count > 3):
                self._promote(item)

        self._merge_similar()
        self._link_recent_concepts()
        self._build_associations()
        self.apply_decay()

        await self.persist()

        self.working.clear()
        self.last_consolidation = self._clock()

    def _identify_patterns(self, items: list[MemoryItem]) -> Counter[str]:
        counts: Counter[str] = Counter()
        for item in items:
            counts.update(self._text.query_concepts(as_text(item.content)))
        return counts

    def _merge_similar(self) -> None:
        merged: dict[str, MemoryItem] = {}
        for key, item in self.long_term.items():
            text = as_text(item.content)
            for kept in merged.values():
                if self._text.word_similarity(text, as_text(kept.content)) >= MERGE_SIMILARITY:
                    kept.metadata.access_count += item.metadata.access_count
                    kept.metadata.importance = max(kept.metadata.importance, item.metadata.importance)
                    self.stats.merged += 1
                    break
            else:
                merged[key] = item
        self.long_term = merged

    def _link_recent_concepts(self) -> None:
        for item in self.short_term[-20:]:
            for concept in self._text.query_concepts(as_text(item.content)):
                ids = self.indexes.semantic.setdefault(concept, [])
                if item.id not in ids:
                    ids.append(item.id)

    def _build_associations(self) -> None:
        items = self.short_term + [m for m in self.long_term.values() if m not in self.short_term]
        texts = [as_text(m.content) for m in items]
        for i in range(len(items) - 1):
            for j in range(i + 1, min(i + ASSOCIATION_WINDOW, len(items))):
                if self._text.word_similarity(texts[i], texts[j]) >= ASSOCIATION_SIMILARITY:
                    if items[j].id not in items[i].metadata.associations:
                        items[i].metadata.associations.append(items[j].id)
                    if items[i].id not in items[j].metadata.associations:
                        items[j].metadata.associations.append(items[i].id)

    def apply_decay(self) -> None:
        """Refresh decay on episodic items and apply the forgetting curve to long-term."""
        now = self._clock()
        for item in self.episodic:
            item.metadata.decay = episodic_decay(now - item.metadata.timestamp)
        self.apply_forgetting_curve()

    def apply_forgetting_curve(self) -> int:
        now = self._clock()
        forgotten = []
        for key, item in self.long_term.items():
            meta = item.metadata
            meta.decay = retention_score(
                now - meta.timestamp,
                now - (meta.last_accessed or meta.timestamp),
                meta.access_count,
                meta.importance,
            )
            if meta.decay < FORGET_THRESHOLD:
                forgotten.append(key)
        for key in forgotten:
            del self.long_term[key]
        if forgotten:
            self.stats.forgotten += len(forgotten)
            logger.info("Forgot %d low-value memories for %s", len(forgotten), self.agent_id)
        return len(forgotten)

    # ------------------------------------------------------------ persistence

    def _snapshot(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "saved_at": self._clock(),
            "last_consolidation": self.last_consolidation,
            "short_term": [_item_to_dict(m) for m in self.short_term],
            "long_term": [_item_to_dict(m) for m in self.long_term.values()],
            "episodic": [_item_to_dict(m) for m in self.episodic],
            "semantic": {c: [_item_to_dict(m) for m in items] for c, items in self.semantic.items()},
            "working": [_item_to_dict(m) for m in self.working],
            "procedural": {
                name: {
                    "steps": [_item_to_dict(m) for m in p.steps],
                    "success_rate": p.success_rate,
                    "usage_count": p.usage_count,
                }
                for name, p in self.procedural.items()
            },
            "stats": dataclasses.asdict(self.stats),
        }

    def _index_snapshot(self) -> dict[str, Any]:
        return {
            "temporal": {str(k): v for k, v in self.indexes.temporal.items()},
            "semantic": self.indexes.semantic,
            "importance": {str(k): v for k, v in self.indexes.importance.items()},
            "association": {k: sorted(v) for k, v in self.indexes.association.items()},
        }

    async def persist(self) -> bool:
        """Write the memory and indexes artifacts. Failures are logged, not raised."""
        try:
            await self._store.save(self.agent_id, "memory", self._snapshot())
            await self._store.save(self.agent_id, "indexes", self._index_snapshot())
        except StorageError as exc:
            self.stats.persist_failures += 1
            logger.warning("Memory persistence failed for %s, keeping in-memory state: %s", self.agent_id, exc)
            return False
        return True

    async def load(self) -> bool:
        """Restore from the store. Returns False when nothing usable was saved."""
        try:
            data = await self._store.load(self.agent_id, "memory")
        except StorageError as exc:
            logger.warning("Could not load memory for %s: %s", self.agent_id, exc)
            return False
        if data is None:
            return False

        try:
            self.short_term = [_item_from_dict(d) for d in data.get("short_term", [])]
            self.long_term = {m.id: m for m in (_item_from_dict(d) for d in data.get("long_term", []))}
            self.episodic = [_item_from_dict(d) for d in data.get("episodic", [])]
            self.semantic = {c: [_item_from_dict(d) for d in items] for c, items in data.get("semantic", {}).items()}
            self.working = [_item_from_dict(d) for d in data.get("working", [])]
            self.procedural = {
                name: Procedure(
                    steps=[_item_from_dict(d) for d in p.get("steps", [])],
                    success_rate=float(p.get("success_rate", 1.0)),
                    usage_count=int(p.get("usage_count", 0)),
                )
                for name, p in data.get("procedural", {}).items()
            }
            self.stats = MemoryStats(**data.get("stats", {}))
            self.last_consolidation = float(data.get("last_consolidation", self._clock()))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Memory artifact for %s is malformed: %s", self.agent_id, exc)
            self.clear()
            return False

        await self._load_indexes()
        logger.info("Loaded %d memories for %s", len(self.all_items()), self.agent_id)
        return True

    async def _load_indexes(self) -> None:
        try:
            raw = await self._store.load(self.agent_id, "indexes")
        except StorageError as exc:
            logger.warning("Index artifact for %s unreadable, rebuilding: %s", self.agent_id, exc)
            raw = None
        if raw is None:
            self._rebuild_indexes()
            return
        try:
            self.indexes = MemoryIndexes(
                temporal={int(k): list(v) for k, v in raw["temporal"].items()},
                semantic={k: list(v) for k, v in raw["semantic"].items()},
                importance={int(k): list(v) for k, v in raw["importance"].items()},
                association={k: set(v) for k, v in raw["association"].items()},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Index artifact for %s malformed, rebuilding: %s", self.agent_id, exc)
            self._rebuild_indexes()

    # ------------------------------------------------------------------ misc

    def counts(self) -> dict[str, int]:
        return {
            MemoryKind.SHORT_TERM.value: len(self.short_term),
            MemoryKind.LONG_TERM.value: len(self.long_term),
            MemoryKind.EPISODIC.value: len(self.episodic),
            MemoryKind.SEMANTIC.value: sum(len(v) for v in self.semantic.values()),
            MemoryKind.WORKING.value: len(self.working),
            MemoryKind.PROCEDURAL.value: sum(len(p.steps) for p in self.procedural.values()),
        }

    def statistics(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "counts": self.counts(),
            "concepts": len(self.semantic),
            "procedures": len(self.procedural),
            "stats": dataclasses.asdict(self.stats),
            "index_sizes": {
                "temporal": len(self.indexes.temporal),
                "semantic": len(self.indexes.semantic),
                "importance": len(self.indexes.importance),
                "association": len(self.indexes.association),
            },
            "top_patterns": self.patterns.most_common(5),
        }

    def clear(self) -> None:
        self.short_term = []
        self.long_term = {}
        self.episodic = []
        self.semantic = {}
        self.working = []
        self.procedural = {}
        self.indexes = MemoryIndexes()
        self.patterns = Counter()

    async def shutdown(self) -> None:
        """Final consolidation, which also persists."""
        await self.consolidate()
        logger.debug("Memory bank for %s shut down", self.agent_id)
