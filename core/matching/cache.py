"""TTL caches for fingerprints and scores shared across worker threads."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

from cachetools import TTLCache

from core.fingerprint.models import DocumentFingerprint, TemplateFingerprint
from core.scoring.models import ConfidenceScore

V = TypeVar("V")

ScoreKey = tuple[str, str, str]

DEFAULT_MAX_ENTRIES = 10_000

_MISSING = object()


class TTLMap(Generic[V]):
    """Bounded ``TTLCache`` behind a lock, with hit and miss counters.

    Entries expire ``ttl_seconds`` after insertion. Expired entries are dropped
    on every write, and the least recently used entry is evicted once
    ``max_entries`` is reached.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._entries: TTLCache[Hashable, V] = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=clock)
        self.hits = 0
        self.misses = 0

    @property
    def max_entries(self) -> int:
        return int(self._entries.maxsize)

    def get(self, key: Hashable) -> V | None:
        with self._lock:
            value = self._entries.get(key, _MISSING)
            if value is _MISSING:
                self.misses += 1
                return None
            self.hits += 1
            return value  # type: ignore[return-value]

    def put(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = value

    def purge_expired(self) -> int:
        with self._lock:
            return len(list(self._entries.expire()))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)


class FingerprintCache:
    """Document fingerprints, template fingerprints, and scores with one TTL.

    Every key is a content digest: documents by ``fingerprint_key``, templates
    by the digest of their flattened declaration, and scores by both digests
    plus the scoring criteria.
    """

    def __init__(
        self,
        ttl_hours: float = 24,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        ttl_seconds = ttl_hours * 3600
        self.documents: TTLMap[DocumentFingerprint] = TTLMap(ttl_seconds, max_entries=max_entries, clock=clock)
        self.templates: TTLMap[TemplateFingerprint] = TTLMap(ttl_seconds, max_entries=max_entries, clock=clock)
        self.scores: TTLMap[ConfidenceScore] = TTLMap(ttl_seconds, max_entries=max_entries, clock=clock)

    def get_document(self, fingerprint_key: str) -> DocumentFingerprint | None:
        return self.documents.get(fingerprint_key)

    def put_document(self, fingerprint: DocumentFingerprint) -> None:
        self.documents.put(fingerprint.fingerprint_key, fingerprint)

    def get_template(self, fingerprint_key: str) -> TemplateFingerprint | None:
        return self.templates.get(fingerprint_key)

    def put_template(self, fingerprint: TemplateFingerprint) -> None:
        self.templates.put(fingerprint.fingerprint_key, fingerprint)

    def get_score(self, key: ScoreKey) -> ConfidenceScore | None:
        return self.scores.get(key)

    def put_score(self, key: ScoreKey, score: ConfidenceScore) -> None:
        self.scores.put(key, score)

    def purge_expired(self) -> int:
        return (
            self.documents.purge_expired()
            + self.templates.purge_expired()
            + self.scores.purge_expired()
        )

    def clear(self) -> None:
        self.documents.clear()
        self.templates.clear()
        self.scores.clear()

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            name: {"entries": len(cache), "hits": cache.hits, "misses": cache.misses}
            for name, cache in (
                ("documents", self.documents),
                ("templates", self.templates),
                ("scores", self.scores),
            )
        }
