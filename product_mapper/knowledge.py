"""
Knowledge / Learning Store.

Keeps accepted corrections as reinforced ``pattern -> action`` entries that
the extraction engine consults *before* the static dictionaries.

* ``add_entry`` reinforces an existing (rule type, normalised pattern) entry
  instead of duplicating it.
* ``update_success_rate`` records the outcome of applying an entry.
* ``find_applicable_rules`` returns matching entries, best first, ranked by
  ``confidence * success_rate``.

Writes are serialised by a re-entrant lock; reads work on a snapshot of the
entry list, so row processing may read concurrently with a single writer.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from product_mapper.config import LearningConfig
from product_mapper.errors import ConfigurationError
from product_mapper.fuzzy_matcher import (
    is_pattern_match,
    normalize_pattern,
    reinforce_confidence,
    running_success_rate,
)
from product_mapper.logging_setup import get_logger

logger = get_logger("knowledge")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def correction_rule_type(field_name: str) -> str:
    """Rule type under which corrections for *field_name* are stored."""
    return f"{field_name}_correction"


@dataclass
class KnowledgeEntry:
    """One learned ``pattern -> action`` mapping."""

    rule_type: str
    pattern: str
    action: str
    confidence: float
    created_by: str = "system"
    usage_count: int = 0
    success_rate: float = 1.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_now)
    last_used: Optional[datetime] = None

    @property
    def score(self) -> float:
        """Ranking key: ``confidence * success_rate``."""
        return self.confidence * self.success_rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_type": self.rule_type,
            "pattern": self.pattern,
            "action": self.action,
            "confidence": round(self.confidence, 4),
            "usage_count": self.usage_count,
            "success_rate": round(self.success_rate, 4),
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeEntry":
        try:
            last_used = data.get("last_used")
            return cls(
                id=str(data.get("id") or uuid.uuid4().hex),
                rule_type=str(data["rule_type"]),
                pattern=normalize_pattern(data["pattern"]),
                action=str(data["action"]),
                confidence=float(data.get("confidence", 0.0)),
                usage_count=int(data.get("usage_count", 0)),
                success_rate=float(data.get("success_rate", 1.0)),
                created_at=(
                    datetime.fromisoformat(data["created_at"])
                    if data.get("created_at")
                    else _now()
                ),
                last_used=datetime.fromisoformat(last_used) if last_used else None,
                created_by=str(data.get("created_by", "system")),
            )
        except KeyError as exc:
            raise ConfigurationError(f"Knowledge entry missing key {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Malformed knowledge entry {data!r}: {exc}") from exc


class KnowledgeStore:
    """In-memory learning store with optional JSON persistence.

    Parameters
    ----------
    config:
        Reinforcement delta, edit-distance limit, correction confidence and
        the optional persistence path.
    autosave:
        When True and a path is configured, every write is flushed to disk.
    """

    def __init__(
        self,
        config: Optional[LearningConfig] = None,
        autosave: bool = True,
    ) -> None:
        self._config = config or LearningConfig()
        self._entries: List[KnowledgeEntry] = []
        self._lock = threading.RLock()
        self._path: Optional[Path] = (
            Path(self._config.knowledge_path) if self._config.knowledge_path else None
        )
        self._autosave = autosave

        if self._path is not None and self._path.exists():
            self.load(self._path)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def add_entry(
        self,
        rule_type: str,
        pattern: str,
        action: str,
        confidence: float,
        author: str = "",
    ) -> KnowledgeEntry:
        """Insert a new entry or reinforce the existing one.

        Returns
        -------
        KnowledgeEntry
            The created or reinforced entry.
        """
        key = normalize_pattern(pattern)
        if not key:
            raise ValueError("Knowledge pattern cannot be empty")
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Confidence must be within 0..1, got {confidence}")

        with self._lock:
            existing = self._find_exact(rule_type, key)
            if existing is not None:
                existing.confidence = reinforce_confidence(
                    existing.confidence, self._config.reinforcement_delta
                )
                existing.usage_count += 1
                entry = existing
                logger.info(
                    "Reinforced %s %r -> %r (confidence=%.2f, usage=%d)",
                    rule_type,
                    key,
                    entry.action,
                    entry.confidence,
                    entry.usage_count,
                )
            else:
                entry = KnowledgeEntry(
                    rule_type=rule_type,
                    pattern=key,
                    action=str(action).strip(),
                    confidence=confidence,
                    created_by=author or self._config.default_author,
                )
                self._entries.append(entry)
                logger.info(
                    "Learned %s %r -> %r (confidence=%.2f)",
                    rule_type,
                    key,
                    entry.action,
                    confidence,
                )
            self._flush()
            return entry

    def update_success_rate(self, entry_id: str, was_successful: bool) -> Optional[KnowledgeEntry]:
        """Record one application of *entry_id*. Unknown ids are ignored."""
        with self._lock:
            entry = self.get(entry_id)
            if entry is None:
                logger.debug("update_success_rate: unknown entry %s", entry_id)
                return None
            entry.usage_count += 1
            entry.last_used = _now()
            entry.success_rate = running_success_rate(
                entry.success_rate, entry.usage_count, was_successful
            )
            self._flush()
            return entry

    def learn_from_correction(
        self,
        field_name: str,
        original: str,
        corrected: str,
        author: str = "",
    ) -> Optional[KnowledgeEntry]:
        """Store a user correction of *field_name* from *original* to *corrected*."""
        if not str(original).strip() or not str(corrected).strip():
            return None
        return self.add_entry(
            correction_rule_type(field_name),
            original,
            corrected,
            self._config.correction_confidence,
            author,
        )

    def remove(self, entry_id: str) -> bool:
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.id != entry_id]
            removed = len(self._entries) != before
            if removed:
                self._flush()
            return removed

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def find_applicable_rules(self, rule_type: str, context: str) -> List[KnowledgeEntry]:
        """Entries of *rule_type* whose pattern applies to *context*, best first."""
        snapshot = list(self._entries)
        matches = [
            e
            for e in snapshot
            if e.rule_type == rule_type
            and is_pattern_match(e.pattern, context, self._config.max_edit_distance)
        ]
        # sorted() is stable: equal scores keep insertion order
        return sorted(matches, key=lambda e: e.score, reverse=True)

    def best_action(self, field_name: str, token: str) -> Optional[Tuple[KnowledgeEntry, str]]:
        """Highest-ranked learned correction for *token*, if any."""
        rules = self.find_applicable_rules(correction_rule_type(field_name), token)
        if not rules:
            return None
        return rules[0], rules[0].action

    def get(self, entry_id: str) -> Optional[KnowledgeEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def export(self) -> List[Dict[str, Any]]:
        """All entries as plain dicts, for inspection or transfer."""
        return [e.to_dict() for e in list(self._entries)]

    def insights(self) -> Dict[str, Any]:
        snapshot = list(self._entries)
        by_type: Dict[str, List[KnowledgeEntry]] = defaultdict(list)
        for e in snapshot:
            by_type[e.rule_type].append(e)

        top = sorted(snapshot, key=lambda e: e.usage_count, reverse=True)[:10]
        return {
            "total_entries": len(snapshot),
            "rule_type_distribution": {t: len(es) for t, es in by_type.items()},
            "avg_success_rate_by_type": {
                t: sum(e.success_rate for e in es) / len(es) for t, es in by_type.items()
            },
            "top_patterns": [
                {
                    "pattern": e.pattern,
                    "usage_count": e.usage_count,
                    "success_rate": e.success_rate,
                }
                for e in top
            ],
        }

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.export(), indent=indent, ensure_ascii=False)

    def save(self, path: Optional[Union[str, Path]] = None) -> None:
        target = Path(path) if path else self._path
        if target is None:
            raise ValueError("No path given and no knowledge_path configured")
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            # the store file is swapped in whole, never written in place
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(self.to_json())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        logger.debug("Saved %d knowledge entries to %s", len(self._entries), target)

    def load(self, path: Union[str, Path]) -> int:
        """Merge entries from a JSON export. Returns the number loaded.

        Raises
        ------
        ConfigurationError
            The file is not a JSON list of entry objects.
        """
        source = Path(path)
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigurationError(f"Knowledge file not found: {source}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {source}: {exc}") from exc
        if not isinstance(data, list):
            raise ConfigurationError(f"Knowledge file {source} must hold a JSON list")

        loaded = [KnowledgeEntry.from_dict(item) for item in data]
        with self._lock:
            known = {e.id for e in self._entries}
            for entry in loaded:
                if entry.id not in known:
                    self._entries.append(entry)
        logger.info("Loaded %d knowledge entries from %s", len(loaded), source)
        return len(loaded)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _find_exact(self, rule_type: str, key: str) -> Optional[KnowledgeEntry]:
        for entry in self._entries:
            if entry.rule_type == rule_type and entry.pattern == key:
                return entry
        return None

    def _flush(self) -> None:
        if self._autosave and self._path is not None:
            self.save(self._path)
