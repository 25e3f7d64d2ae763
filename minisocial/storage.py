"""
Single-document persistence for every entity the service owns.

The store keeps each collection as an insertion-ordered dict keyed by the
entity's identity (an id, or a composite key for likes, follows and
verification codes). All mutations go through ``Store.transaction()``, which
holds one process-wide lock for the read-validate-commit unit and rewrites the
full JSON snapshot before returning.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import json
import logging
import os
import threading
import typing
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Hashable, Iterator, List, Optional, Tuple, Type, TypeVar

from .errors import PersistenceError
from .models import ENTITY_TYPES, Follow, Like

logger = logging.getLogger(__name__)

E = TypeVar("E")

# Likes and follows are keyed by their pair and have no id counter.
COUNTED_TYPES = tuple(cls for cls in ENTITY_TYPES if cls not in (Like, Follow))
COUNTER_KEYS = tuple(cls.collection for cls in COUNTED_TYPES)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# ---------- Record codec ----------


def encode_entity(entity: object) -> dict:
    record = {}
    for f in dataclasses.fields(entity):
        value = getattr(entity, f.name)
        if isinstance(value, dt.datetime):
            value = value.isoformat()
        elif isinstance(value, enum.Enum):
            value = value.value
        record[f.name] = value
    return record


def _parse_datetime(value: str) -> dt.datetime:
    parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)


def _concrete(hint):
    if typing.get_origin(hint) is typing.Union:
        return next(arg for arg in typing.get_args(hint) if arg is not type(None))
    return hint


def _coerce(hint, value):
    hint = _concrete(hint)
    if hint is dt.datetime:
        return _parse_datetime(value)
    if isinstance(hint, type) and issubclass(hint, enum.Enum):
        return hint(value)
    if hint in (int, str, bool):
        return hint(value)
    return value


def _load_default(hint):
    """Zero value for a required field absent from an older record."""
    hint = _concrete(hint)
    if hint is dt.datetime:
        return EPOCH
    if isinstance(hint, type) and issubclass(hint, enum.Enum):
        return next(iter(hint))
    if hint in (int, str, bool):
        return hint()
    return None


def decode_entity(cls: Type[E], record: dict) -> E:
    """Rebuild an entity, defaulting absent fields and ignoring unknown ones."""
    hints = typing.get_type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        value = record.get(f.name)
        if value is not None:
            try:
                kwargs[f.name] = _coerce(hints[f.name], value)
            except (AttributeError, TypeError, ValueError) as exc:
                raise PersistenceError(f"invalid {cls.collection}.{f.name} value {value!r}: {exc}") from exc
        elif f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            logger.warning("Defaulting missing field %r on %s record", f.name, cls.collection)
            kwargs[f.name] = _load_default(hints[f.name])
    return cls(**kwargs)


# ---------- Snapshot file ----------


class SnapshotFile:
    """JSON snapshot on disk, replaced atomically on every save."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def load(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        return json.loads(self.path.read_text(encoding="utf-8"))

    def save(self, document: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)


# ---------- Read views ----------


class StoreView:
    """Immutable point-in-time copy of the collections for read-only derivations."""

    def __init__(self, collections: Dict[str, Dict[Hashable, object]], counters: Dict[str, int]) -> None:
        self._collections = collections
        self.counters = counters

    def get(self, cls: Type[E], key: Hashable) -> Optional[E]:
        return self._collections[cls.collection].get(key)

    def all(self, cls: Type[E]) -> List[E]:
        return list(self._collections[cls.collection].values())

    def contains(self, cls: Type[E], key: Hashable) -> bool:
        return key in self._collections[cls.collection]


class Transaction:
    """Buffered changes applied together when the enclosing block exits cleanly."""

    def __init__(self, store: "Store") -> None:
        self._store = store
        self._pending: Dict[Tuple[str, Hashable], Optional[object]] = {}
        self.now = store.clock()

    @property
    def changes(self) -> int:
        return len(self._pending)

    def allocate_id(self, cls: type) -> int:
        return self._store.allocate_id(cls)

    def put(self, entity: object) -> None:
        self._pending[(entity.collection, entity.key)] = entity

    def remove(self, entity: object) -> None:
        self._pending[(entity.collection, entity.key)] = None

    def get(self, cls: Type[E], key: Hashable) -> Optional[E]:
        marker = (cls.collection, key)
        if marker in self._pending:
            return self._pending[marker]
        return self._store._collections[cls.collection].get(key)

    def all(self, cls: Type[E]) -> List[E]:
        merged = dict(self._store._collections[cls.collection])
        for (collection, key), entity in self._pending.items():
            if collection != cls.collection:
                continue
            if entity is None:
                merged.pop(key, None)
            else:
                merged[key] = entity
        return list(merged.values())

    def items(self) -> List[Tuple[Tuple[str, Hashable], Optional[object]]]:
        return list(self._pending.items())


# ---------- Store ----------


class Store:
    """Exclusive owner of all entities and id counters."""

    def __init__(
        self,
        snapshot: Optional[SnapshotFile] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ) -> None:
        self.snapshot = snapshot
        self.clock = clock or utcnow
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[Hashable, object]] = {cls.collection: {} for cls in ENTITY_TYPES}
        self._counters: Dict[str, int] = {key: 0 for key in COUNTER_KEYS}
        if self.snapshot is not None:
            self._load()

    # ---- ids ----

    def allocate_id(self, cls: type) -> int:
        if cls.collection not in self._counters:
            raise ValueError(f"{cls.__name__} has no id counter")
        with self._lock:
            self._counters[cls.collection] += 1
            return self._counters[cls.collection]

    # ---- reads ----

    def get(self, cls: Type[E], key: Hashable) -> Optional[E]:
        with self._lock:
            return self._collections[cls.collection].get(key)

    def all(self, cls: Type[E]) -> List[E]:
        with self._lock:
            return list(self._collections[cls.collection].values())

    def view(self) -> StoreView:
        with self._lock:
            return StoreView(
                {name: dict(items) for name, items in self._collections.items()},
                dict(self._counters),
            )

    def summary(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {
                "counts": {name: len(items) for name, items in self._collections.items()},
                "counters": dict(self._counters),
            }

    # ---- writes ----

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._lock:
            tx = Transaction(self)
            yield tx
            if not tx.changes:
                return
            for (collection, key), entity in tx.items():
                if entity is None:
                    self._collections[collection].pop(key, None)
                else:
                    self._collections[collection][key] = entity
            self._persist()

    def flush(self) -> None:
        with self._lock:
            self._persist()

    # ---- snapshot ----

    def to_document(self) -> dict:
        with self._lock:
            document = {
                name: [encode_entity(entity) for entity in items.values()]
                for name, items in self._collections.items()
            }
            document["counters"] = dict(self._counters)
            return document

    def _persist(self) -> None:
        if self.snapshot is None:
            return
        try:
            self.snapshot.save(self.to_document())
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Snapshot write to %s failed: %s", self.snapshot.path, exc)
            raise PersistenceError(f"could not persist snapshot: {exc}") from exc

    def _load(self) -> None:
        try:
            document = self.snapshot.load()
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"could not read snapshot {self.snapshot.path}: {exc}") from exc
        if document is None:
            logger.info("No snapshot at %s; initialising empty store", self.snapshot.path)
            self._persist()
            return
        for cls in ENTITY_TYPES:
            for record in document.get(cls.collection) or []:
                entity = decode_entity(cls, record)
                self._collections[cls.collection][entity.key] = entity
        counters = document.get("counters") or {}
        for cls in COUNTED_TYPES:
            stored = int(counters.get(cls.collection, 0))
            # A counter behind the persisted ids would hand out duplicates.
            highest = max((entity.id for entity in self._collections[cls.collection].values()), default=0)
            self._counters[cls.collection] = max(stored, highest)
        logger.info(
            "Loaded snapshot %s (%d users, %d posts)",
            self.snapshot.path,
            len(self._collections["users"]),
            len(self._collections["posts"]),
        )
