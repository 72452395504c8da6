"""
StorePilot — Record Store

Versioned, cache-backed JSON collections (products, orders, promotions).

Each collection lives in one document on disk:

    {"version": "1.0.0", "lastModified": "<iso>", "data": [ ... ]}

Two locations exist per collection: a read-only seed copy and a
working copy. In working mode the seed document is copied to the
working directory the first time the collection is touched, and all
reads and writes go to the working copy from then on.

Reads are served from an in-memory cache for `cache_ttl` seconds
and always return deep copies, so callers can never mutate cached
records by accident.

Usage:
    registry = StoreRegistry(StoreLocation(seed_dir="data/seed",
                                           working_dir="data/working"))
    products = registry.get("products")
    products.update("prod_1", {"name": "Headphones"})
"""

from __future__ import annotations

import copy
import json
import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from pilot.errors import DuplicateIdError

logger = logging.getLogger("storepilot.records")

DOCUMENT_VERSION = "1.0.0"

Record = dict[str, Any]
Predicate = Callable[[Record], bool]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_document() -> dict[str, Any]:
    return {"version": DOCUMENT_VERSION, "lastModified": _now_iso(), "data": []}


# ═══════════════════════════════════════════════════════════════════
# Location
# ═══════════════════════════════════════════════════════════════════

@dataclass
class StoreLocation:
    """Where a store's documents live. mode is 'seed' or 'working'."""
    seed_dir: str
    working_dir: str
    mode: str = "working"

    def __post_init__(self):
        if self.mode not in ("seed", "working"):
            raise ValueError(f"Unknown store mode: {self.mode!r}")

    @property
    def active_dir(self) -> Path:
        return Path(self.working_dir if self.mode == "working" else self.seed_dir)

    def seed_path(self, name: str) -> Path:
        return Path(self.seed_dir) / f"{name}.json"

    def working_path(self, name: str) -> Path:
        return Path(self.working_dir) / f"{name}.json"


# ═══════════════════════════════════════════════════════════════════
# Record Store
# ═══════════════════════════════════════════════════════════════════

class RecordStore:
    """
    One JSON-backed collection of records keyed by immutable `id`.

    Writes go straight to disk and refresh the cache. No file locking:
    concurrent writers are last-writer-wins.
    """

    def __init__(
        self,
        name: str,
        location: StoreLocation,
        cache_ttl: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.location = location
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: list[Record] | None = None
        self._last_read = 0.0
        self._seeded = False
        self._lock = threading.RLock()

    # ─── Paths ──────────────────────────────────────────────────────

    @property
    def path(self) -> Path:
        if self.location.mode == "working":
            return self.location.working_path(self.name)
        return self.location.seed_path(self.name)

    def _ensure_document(self) -> Path:
        """
        Make sure the active document exists.

        Working mode copies the seed document once; if there is no
        seed either, an empty document is created.
        """
        path = self.path
        if self.location.mode == "working" and not self._seeded:
            self._seeded = True
            if not path.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
                seed = self.location.seed_path(self.name)
                if seed.exists():
                    shutil.copyfile(seed, path)
                    logger.info("Copied %s from seed to %s", seed.name, path.parent)
                else:
                    logger.warning("Seed file not found: %s; starting empty", seed)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            self._write_document(path, _empty_document())
        return path

    def switch_to_working(self) -> None:
        """Point a live store at the working directory."""
        with self._lock:
            if self.location.mode == "working":
                return
            self.location = StoreLocation(
                seed_dir=self.location.seed_dir,
                working_dir=self.location.working_dir,
                mode="working",
            )
            self._seeded = False
            self.invalidate_cache()

    # ─── Disk I/O ───────────────────────────────────────────────────

    def _read(self) -> list[Record]:
        path = self._ensure_document()
        try:
            with open(path) as f:
                doc = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable %s document %s: %s", self.name, path, e)
            return []
        data = doc.get("data") if isinstance(doc, dict) else None
        if not isinstance(data, list):
            logger.warning("Malformed %s document %s: missing data list", self.name, path)
            return []
        return data

    @staticmethod
    def _write_document(path: Path, doc: dict[str, Any]) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(doc, f, indent=2)
        os.replace(tmp, path)

    def _write(self, records: list[Record]) -> None:
        path = self._ensure_document()
        self._write_document(path, {
            "version": DOCUMENT_VERSION,
            "lastModified": _now_iso(),
            "data": records,
        })
        self._cache = copy.deepcopy(records)
        self._last_read = self._clock()

    def _load(self) -> list[Record]:
        """Cached records, not copied. Internal use only."""
        now = self._clock()
        if self._cache is not None and now - self._last_read < self.cache_ttl:
            return self._cache
        self._cache = self._read()
        self._last_read = now
        return self._cache

    def invalidate_cache(self) -> None:
        self._cache = None
        self._last_read = 0.0

    # ─── Reads ──────────────────────────────────────────────────────

    def get_all(self) -> list[Record]:
        with self._lock:
            return copy.deepcopy(self._load())

    def get_by_id(self, record_id: str) -> Record | None:
        with self._lock:
            for r in self._load():
                if r.get("id") == record_id:
                    return copy.deepcopy(r)
        return None

    def get_by_ids(self, ids: Iterable[str]) -> list[Record]:
        wanted = set(ids)
        with self._lock:
            return [copy.deepcopy(r) for r in self._load() if r.get("id") in wanted]

    def find(self, predicate: Predicate) -> list[Record]:
        return [r for r in self.get_all() if predicate(r)]

    def find_one(self, predicate: Predicate) -> Record | None:
        for r in self.get_all():
            if predicate(r):
                return r
        return None

    def count(self, predicate: Predicate | None = None) -> int:
        with self._lock:
            records = self._load()
            if predicate is None:
                return len(records)
            return sum(1 for r in records if predicate(copy.deepcopy(r)))

    def exists(self, record_id: str) -> bool:
        with self._lock:
            return any(r.get("id") == record_id for r in self._load())

    # ─── Writes ─────────────────────────────────────────────────────

    def create(self, record: Record) -> Record:
        with self._lock:
            records = copy.deepcopy(self._load())
            if any(r.get("id") == record.get("id") for r in records):
                raise DuplicateIdError(self.name, str(record.get("id")))
            records.append(copy.deepcopy(record))
            self._write(records)
        return copy.deepcopy(record)

    def create_many(self, new_records: list[Record]) -> list[Record]:
        """Insert all records or none of them."""
        with self._lock:
            records = copy.deepcopy(self._load())
            seen = {r.get("id") for r in records}
            for rec in new_records:
                if rec.get("id") in seen:
                    raise DuplicateIdError(self.name, str(rec.get("id")))
                seen.add(rec.get("id"))
            records.extend(copy.deepcopy(new_records))
            self._write(records)
        return copy.deepcopy(new_records)

    def update(self, record_id: str, partial: Record) -> Record | None:
        """Merge partial into the record. The id never changes."""
        with self._lock:
            records = copy.deepcopy(self._load())
            for i, r in enumerate(records):
                if r.get("id") == record_id:
                    merged = {**r, **copy.deepcopy(partial), "id": record_id}
                    records[i] = merged
                    self._write(records)
                    return copy.deepcopy(merged)
        return None

    def upsert(self, record: Record) -> tuple[Record, bool]:
        """Returns (record, created)."""
        with self._lock:
            record_id = record.get("id")
            if self.exists(record_id):
                return self.update(record_id, record), False
            return self.create(record), True

    def delete(self, record_id: str) -> bool:
        with self._lock:
            records = self._load()
            remaining = [r for r in records if r.get("id") != record_id]
            if len(remaining) == len(records):
                return False
            self._write(copy.deepcopy(remaining))
        return True

    def delete_many(self, ids: Iterable[str]) -> int:
        doomed = set(ids)
        with self._lock:
            records = self._load()
            remaining = [r for r in records if r.get("id") not in doomed]
            removed = len(records) - len(remaining)
            if removed > 0:
                self._write(copy.deepcopy(remaining))
        return removed

    def bulk_update(self, updates: list[tuple[str, Record]]) -> list[Record]:
        """Apply several partial updates with one write. Unknown ids are skipped."""
        with self._lock:
            records = copy.deepcopy(self._load())
            index = {r.get("id"): i for i, r in enumerate(records)}
            changed: list[Record] = []
            for record_id, partial in updates:
                i = index.get(record_id)
                if i is None:
                    continue
                records[i] = {**records[i], **copy.deepcopy(partial), "id": record_id}
                changed.append(records[i])
            if changed:
                self._write(records)
        return copy.deepcopy(changed)

    def clear(self) -> None:
        with self._lock:
            self._write([])


# ═══════════════════════════════════════════════════════════════════
# Registry (owns the live stores)
# ═══════════════════════════════════════════════════════════════════

class StoreRegistry:
    """
    Owns one RecordStore per collection name.

    All stores share a StoreLocation template; switching mode or
    invalidating caches sweeps every store the registry created.
    """

    def __init__(
        self,
        location: StoreLocation,
        cache_ttl: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.location = location
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._stores: dict[str, RecordStore] = {}

    def create(self, name: str) -> RecordStore:
        if name in self._stores:
            return self._stores[name]
        store = RecordStore(
            name,
            StoreLocation(self.location.seed_dir, self.location.working_dir, self.location.mode),
            cache_ttl=self.cache_ttl,
            clock=self._clock,
        )
        self._stores[name] = store
        return store

    def get(self, name: str) -> RecordStore:
        return self._stores.get(name) or self.create(name)

    def names(self) -> list[str]:
        return list(self._stores.keys())

    def invalidate_all(self) -> None:
        for store in self._stores.values():
            store.invalidate_cache()

    def switch_all_to_working(self) -> None:
        self.location = StoreLocation(self.location.seed_dir, self.location.working_dir, "working")
        for store in self._stores.values():
            store.switch_to_working()

    def reset_working(self) -> list[str]:
        """
        Delete working documents so the next access re-seeds them.
        Returns the names of the documents removed.
        """
        removed = []
        working = Path(self.location.working_dir)
        names = set(self._stores)
        if working.exists():
            names |= {p.stem for p in working.glob("*.json")}
        for name in sorted(names):
            path = working / f"{name}.json"
            if path.exists():
                path.unlink()
                removed.append(name)
        for store in self._stores.values():
            store._seeded = False
            store.invalidate_cache()
        if removed:
            logger.info("Reset working data: %s", ", ".join(removed))
        return removed


# ═══════════════════════════════════════════════════════════════════
# Pagination
# ═══════════════════════════════════════════════════════════════════

def paginate(
    items: list[Record],
    page: int = 1,
    limit: int = 20,
    sort_by: str | None = None,
    sort_order: str = "asc",
) -> dict[str, Any]:
    """Sort and slice a record list. Missing sort keys sort last."""
    page = max(1, int(page))
    limit = max(1, int(limit))
    rows = list(items)
    if sort_by:
        present = [r for r in rows if r.get(sort_by) is not None]
        missing = [r for r in rows if r.get(sort_by) is None]
        present.sort(key=lambda r: r[sort_by], reverse=(sort_order == "desc"))
        rows = present + missing
    total = len(rows)
    total_pages = (total + limit - 1) // limit if total else 0
    start = (page - 1) * limit
    return {
        "data": rows[start:start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }
