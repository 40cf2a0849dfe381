"""
crosswalk.py

Derives the old-vintage ↔ new-vintage identifier mapping from change events.
"""

from typing import Dict, Iterable, List, Sequence

import pandas as pd
from loguru import logger

from .errors import MalformedChangeEvent
from .models import ChangeEvent, ChangeKind, CrosswalkEntry

CROSSWALK_COLUMNS = ["old_id", "new_id", "kind"]


class CrosswalkBuilder:
    """Build crosswalk entries for an inclusive analysis window ``[start_year, end_year]``.

    Example:
        builder = CrosswalkBuilder(2019, 2023)
        entries = builder.build(events)
        removed = builder.as_mapping(entries, ChangeKind.REMOVED)
    """

    def __init__(self, start_year: int, end_year: int):
        if start_year > end_year:
            raise ValueError(f"Invalid analysis window: {start_year} > {end_year}")
        self.start_year = start_year
        self.end_year = end_year

    def build(self, events: Sequence[ChangeEvent]) -> List[CrosswalkEntry]:
        logger.info(f"🔗 Building crosswalk for {self.start_year}-{self.end_year}...")

        retained = [e for e in events if e.in_window(self.start_year, self.end_year)]
        entries = [self.entry_for(event) for event in retained]

        removed = sum(1 for e in entries if e.kind is ChangeKind.REMOVED)
        logger.info(f"  📊 {len(retained):,}/{len(events):,} change events inside the window")
        logger.info(f"  📊 {removed:,} removed, {len(entries) - removed:,} created")
        return entries

    @staticmethod
    def entry_for(event: ChangeEvent) -> CrosswalkEntry:
        has_origin = event.origin_code is not None
        has_destination = event.destination_code is not None

        if has_origin == has_destination:
            state = "both" if has_origin else "neither"
            raise MalformedChangeEvent(
                f"Change event has {state} origin and destination", [event.unit_code]
            )

        if not has_origin:
            return CrosswalkEntry(
                old_id=event.unit_code, new_id=event.destination_code, kind=ChangeKind.REMOVED
            )
        return CrosswalkEntry(
            old_id=event.origin_code, new_id=event.unit_code, kind=ChangeKind.CREATED
        )

    @staticmethod
    def filter_kind(entries: Iterable[CrosswalkEntry], kind: ChangeKind) -> List[CrosswalkEntry]:
        return [entry for entry in entries if entry.kind is kind]

    @classmethod
    def removed(cls, entries: Iterable[CrosswalkEntry]) -> List[CrosswalkEntry]:
        return cls.filter_kind(entries, ChangeKind.REMOVED)

    @classmethod
    def created(cls, entries: Iterable[CrosswalkEntry]) -> List[CrosswalkEntry]:
        return cls.filter_kind(entries, ChangeKind.CREATED)

    @staticmethod
    def as_mapping(entries: Iterable[CrosswalkEntry], kind: ChangeKind) -> Dict[str, str]:
        """Fold entries of one kind into the lookup used to rekey records.

        Removed entries map ``old_id → new_id``; Created entries map
        ``new_id → old_id`` (a split-out 2023 unit back to its 2019 parent).
        The mapping must be a function: one source id with two different
        targets is rejected.
        """
        mapping: Dict[str, str] = {}
        conflicts = set()
        for entry in entries:
            if entry.kind is not kind:
                continue
            if kind is ChangeKind.REMOVED:
                source, target = entry.old_id, entry.new_id
            else:
                source, target = entry.new_id, entry.old_id
            if mapping.get(source, target) != target:
                conflicts.add(source)
            mapping[source] = target

        if conflicts:
            raise MalformedChangeEvent(
                f"{kind.value} entries map one unit to several targets", conflicts
            )
        return mapping

    @staticmethod
    def to_frame(entries: Iterable[CrosswalkEntry]) -> pd.DataFrame:
        rows = [
            {"old_id": e.old_id, "new_id": e.new_id, "kind": e.kind.value} for e in entries
        ]
        return pd.DataFrame(rows, columns=CROSSWALK_COLUMNS)
