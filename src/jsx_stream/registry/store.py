"""
Component Registry
==================

Keyed, ordered store of component records.

The registry is the single source of truth the renderer reads from. The
ingestor is its only writer; every write replaces a whole ComponentRecord
so readers never see a raw buffer and cleaned code from different updates.

Design Rules:
    - Records are ordered by sequence (arrival order), not by id
    - Terminal records are never modified, only evicted or replaced by a reset
    - Eviction never removes a Streaming record or the last completed one
    - A failing subscriber is logged and never blocks other subscribers
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from jsx_stream.models.component import ComponentRecord, ComponentStatus, Position


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegistryChange:
    """
    Notification sent to subscribers after a mutation.

    Attributes:
        kind: "upsert", "evict", "remove" or "clear"
        component_id: Affected id (None for clear)
        record: Stored record for upserts
    """

    kind: str
    component_id: Optional[str] = None
    record: Optional[ComponentRecord] = None


Subscriber = Callable[[RegistryChange], None]


class ComponentRegistry:
    """
    In-memory component store with bounded retention.

    Attributes:
        capacity: Maximum number of non-streaming records kept
        evicted_count: Records evicted so far

    Example:
        registry = ComponentRegistry(capacity=20)
        unsubscribe = registry.subscribe(lambda change: print(change.kind))

        record = ComponentRecord(
            id="hero", name="Hero", position=Position.HEADER,
            sequence=registry.next_sequence(),
        )
        registry.upsert(record)
        registry.list_ordered()
    """

    def __init__(self, capacity: int = 20) -> None:
        """
        Initialize registry.

        Args:
            capacity: Retained terminal records. Must be >= 1.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self._capacity = capacity
        self._records: Dict[str, ComponentRecord] = {}
        self._subscribers: List[Subscriber] = []
        self._sequence: int = 0
        self._revision: int = 0
        self._last_completed_id: Optional[str] = None
        self._evicted_count: int = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return len(self._records)

    @property
    def evicted_count(self) -> int:
        return self._evicted_count

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, component_id: str) -> bool:
        return component_id in self._records

    def next_sequence(self) -> int:
        """Allocate the next arrival sequence number."""
        self._sequence += 1
        return self._sequence

    def get(self, component_id: str) -> Optional[ComponentRecord]:
        return self._records.get(component_id)

    def upsert(self, record: ComponentRecord) -> ComponentRecord:
        """
        Insert or replace a record.

        A record with the same id and sequence as the stored one is an
        update and must respect status transitions; a different sequence
        is a reset and replaces the stored record outright.

        Args:
            record: New record snapshot

        Returns:
            The stored record (with its revision stamped).

        Raises:
            InvalidTransitionError: Update of a record in a terminal status
        """
        existing = self._records.get(record.id)
        if existing is not None and existing.sequence == record.sequence:
            existing.check_transition(record.status)

        self._revision += 1
        stored = replace(record, revision=self._revision)
        self._records[record.id] = stored
        self._notify(RegistryChange("upsert", stored.id, stored))

        if stored.status.is_terminal:
            self._last_completed_id = stored.id
            self.evict()
        return stored

    def remove(self, component_id: str) -> Optional[ComponentRecord]:
        """Remove a record; returns it, or None if absent."""
        record = self._records.pop(component_id, None)
        if record is None:
            return None
        if self._last_completed_id == component_id:
            self._last_completed_id = None
        self._notify(RegistryChange("remove", component_id))
        return record

    def clear(self) -> int:
        """
        Remove every record and restart sequence numbering.

        Returns:
            Number of records removed.
        """
        cleared = len(self._records)
        self._records.clear()
        self._sequence = 0
        self._last_completed_id = None
        self._notify(RegistryChange("clear"))
        return cleared

    def evict(self) -> List[str]:
        """
        Drop least-recently-updated terminal records beyond capacity.

        Returns:
            Ids of evicted records, oldest first.
        """
        terminal = [r for r in self._records.values() if r.status.is_terminal]
        overflow = len(terminal) - self._capacity
        if overflow <= 0:
            return []

        candidates = sorted(
            (r for r in terminal if r.id != self._last_completed_id),
            key=lambda r: (r.revision, r.sequence),
        )
        evicted = []
        for record in candidates[:overflow]:
            del self._records[record.id]
            self._evicted_count += 1
            evicted.append(record.id)
            self._notify(RegistryChange("evict", record.id))

        logger.info(
            f"Evicted {len(evicted)} component(s) over capacity {self._capacity}: "
            f"{', '.join(evicted)}"
        )
        return evicted

    def list_ordered(self) -> List[ComponentRecord]:
        """All records in arrival order."""
        return sorted(self._records.values(), key=lambda r: r.sequence)

    def sections(self) -> Dict[Position, List[ComponentRecord]]:
        """Records grouped by position, sections in page order."""
        grouped: Dict[Position, List[ComponentRecord]] = {position: [] for position in Position}
        for record in self.list_ordered():
            grouped[record.position].append(record)
        return grouped

    def snapshot(self) -> List[dict]:
        """Renderer-facing view of every record, in arrival order."""
        return [record.to_dict() for record in self.list_ordered()]

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a change callback.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def metrics(self) -> dict:
        """
        Get registry metrics for observability.

        Returns:
            Dict with size, capacity, per-status counts and evicted_count
        """
        counts = {status.value: 0 for status in ComponentStatus}
        for record in self._records.values():
            counts[record.status.value] += 1
        return {
            "size": self.size,
            "capacity": self._capacity,
            "evicted_count": self._evicted_count,
            **counts,
        }

    def _notify(self, change: RegistryChange) -> None:
        for callback in list(self._subscribers):
            try:
                callback(change)
            except Exception as e:
                logger.error(f"Registry subscriber failed on {change.kind}: {e}")
