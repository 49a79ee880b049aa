"""Persistence boundary: paging types, identity strategies, in-memory repository.

The repository is the only place that assigns identities and stamps audit
fields. A real database-backed repository only has to offer the same
methods as ``InMemoryRepository``.

Usage:
    users = InMemoryRepository(SequenceIdentity(), auditor=lambda: "admin@example.com")
    saved = users.save(User(email="ada@example.com"))
    users.find_by_id(saved.id)
"""
from __future__ import annotations
import datetime
import itertools
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

from .models import BaseModel

M = TypeVar("M")
T = TypeVar("T")
R = TypeVar("R")
ID = TypeVar("ID")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 1000


# ─────────────────────────────────────────────────────────────────────────────
# Paging
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PageRequest:
    """Zero-based page request with optional sort orders.

    ``sort`` is a sequence of ``(attribute, "asc"|"desc")`` tuples.
    """
    page: int = 0
    size: int = DEFAULT_PAGE_SIZE
    sort: tuple[tuple[str, str], ...] = ()

    def __post_init__(self):
        if self.page < 0:
            raise ValueError("Page index must not be negative")
        if self.size < 1 or self.size > MAX_PAGE_SIZE:
            raise ValueError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
        for _, direction in self.sort:
            if direction not in ("asc", "desc"):
                raise ValueError(f"Invalid sort direction: {direction}")

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results plus the total element count."""
    content: list[T] = field(default_factory=list)
    number: int = 0
    size: int = DEFAULT_PAGE_SIZE
    total_elements: int = 0

    @property
    def total_pages(self) -> int:
        if self.size == 0:
            return 1
        return max(1, -(-self.total_elements // self.size))

    @property
    def is_last(self) -> bool:
        return self.number + 1 >= self.total_pages

    def map(self, fn: Callable[[T], R]) -> "Page[R]":
        return Page([fn(item) for item in self.content], self.number, self.size, self.total_elements)

    def __iter__(self):
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)


# ─────────────────────────────────────────────────────────────────────────────
# Identity strategies
# ─────────────────────────────────────────────────────────────────────────────

class IdentityStrategy(Generic[ID]):
    """Reads and assigns the identity of an entity."""

    def get(self, entity) -> Optional[ID]:
        return entity.id

    def assign(self, entity) -> None:
        raise NotImplementedError

    def coerce(self, raw: Any) -> ID:
        """Convert an identifier taken from a URL into the identity type."""
        raise NotImplementedError


class SequenceIdentity(IdentityStrategy[int]):
    """Monotonic integer ids starting at ``start``."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def assign(self, entity) -> None:
        with self._lock:
            entity.id = next(self._counter)

    def coerce(self, raw: Any) -> int:
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid numeric id: {raw!r}")


class UuidIdentity(IdentityStrategy[uuid.UUID]):
    """Random (version 4) UUIDs."""

    def assign(self, entity) -> None:
        entity.id = uuid.uuid4()

    def coerce(self, raw: Any) -> uuid.UUID:
        if isinstance(raw, uuid.UUID):
            return raw
        try:
            return uuid.UUID(str(raw))
        except ValueError:
            raise ValueError(f"Invalid UUID: {raw!r}")


class NaturalIdentity(IdentityStrategy[str]):
    """Identity is an attribute set by the caller (role name, right authority)."""

    def __init__(self, attribute: str):
        self.attribute = attribute

    def get(self, entity) -> Optional[str]:
        return getattr(entity, self.attribute)

    def assign(self, entity) -> None:
        if not self.get(entity):
            raise ValueError(f"Natural identity '{self.attribute}' must be set before saving")

    def coerce(self, raw: Any) -> str:
        return str(raw)


# ─────────────────────────────────────────────────────────────────────────────
# In-memory repository
# ─────────────────────────────────────────────────────────────────────────────

def _sort_key(attribute: str):
    def key(entity):
        value = getattr(entity, attribute, None)
        # None sorts first regardless of the value type
        return (value is not None, value)
    return key


class InMemoryRepository(Generic[M, ID]):
    """Thread-safe dict-backed repository.

    Args:
        identity: Identity strategy of the stored entity type
        auditor: Returns the username stamped into created_by/updated_by
        clock: Returns the timestamp stamped into created_at/updated_at
    """

    def __init__(
        self,
        identity: IdentityStrategy[ID],
        auditor: Optional[Callable[[], Optional[str]]] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ):
        self.identity = identity
        self._auditor = auditor or (lambda: None)
        self._clock = clock or datetime.datetime.now
        self._store: dict[ID, M] = {}
        self._lock = threading.RLock()

    def coerce_id(self, raw: Any) -> ID:
        return self.identity.coerce(raw)

    def find_by_id(self, entity_id: ID) -> Optional[M]:
        with self._lock:
            return self._store.get(entity_id)

    def exists_by_id(self, entity_id: ID) -> bool:
        with self._lock:
            return entity_id in self._store

    def count(self, predicate: Optional[Callable[[M], bool]] = None) -> int:
        with self._lock:
            if predicate is None:
                return len(self._store)
            return sum(1 for entity in self._store.values() if predicate(entity))

    def find_all(self, page_request: Optional[PageRequest] = None):
        """All entities as a list, or as a ``Page`` when a page request is given."""
        return self.find_all_matching(None, page_request)

    def find_all_matching(
        self,
        predicate: Optional[Callable[[M], bool]],
        page_request: Optional[PageRequest] = None,
    ):
        with self._lock:
            entities = [e for e in self._store.values() if predicate is None or predicate(e)]
        if page_request is None:
            return entities
        for attribute, direction in reversed(page_request.sort):
            entities.sort(key=_sort_key(attribute), reverse=direction == "desc")
        start = page_request.offset
        return Page(
            entities[start:start + page_request.size],
            page_request.page,
            page_request.size,
            len(entities),
        )

    def find_one(self, predicate: Callable[[M], bool]) -> Optional[M]:
        with self._lock:
            return next((e for e in self._store.values() if predicate(e)), None)

    def save(self, entity: M) -> M:
        with self._lock:
            entity_id = self.identity.get(entity)
            is_new = entity_id is None or entity_id not in self._store
            if is_new:
                # Generated identities replace any id set by the caller
                self.identity.assign(entity)
                entity_id = self.identity.get(entity)
            self._stamp(entity, is_new)
            self._store[entity_id] = entity
            return entity

    def update_by_id(self, entity_id: ID, change: Callable[[M], M]) -> Optional[M]:
        """Save ``change(stored)`` for the entity with ``entity_id`` as one atomic step.

        Returns:
            The saved entity, or None if no entity has this id
        """
        with self._lock:
            current = self._store.get(entity_id)
            if current is None:
                return None
            return self.save(change(current))

    def save_all(self, entities: Iterable[M]) -> list[M]:
        return [self.save(entity) for entity in entities]

    def delete_by_id(self, entity_id: ID) -> None:
        with self._lock:
            self._store.pop(entity_id, None)

    def _stamp(self, entity, is_new: bool) -> None:
        if not isinstance(entity, BaseModel):
            return
        now = self._clock()
        auditor = self._auditor()
        if is_new and entity.created_at is None:
            entity.created_at = now
            entity.created_by = auditor
        entity.updated_at = now
        entity.updated_by = auditor
