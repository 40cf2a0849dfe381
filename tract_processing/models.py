"""Typed records shared by the reconciliation components."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class _Missing:
    """Singleton marker for an absent value. Distinct from None, 0 and NaN."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


class ChangeKind(str, Enum):
    REMOVED = "Removed"
    CREATED = "Created"


@dataclass(frozen=True)
class ChangeEvent:
    """One row of the boundary-change register.

    Exactly one of ``origin_code`` / ``destination_code`` is set. A missing
    origin marks a removal (the unit was absorbed into ``destination_code``);
    a missing destination marks a creation (the unit split out of
    ``origin_code``).
    """

    unit_code: str
    origin_code: Optional[str]
    destination_code: Optional[str]
    entry_year: int
    exit_year: int

    def in_window(self, start_year: int, end_year: int) -> bool:
        return (start_year <= self.entry_year <= end_year) or (
            start_year <= self.exit_year <= end_year
        )


@dataclass(frozen=True)
class CrosswalkEntry:
    old_id: str
    new_id: str
    kind: ChangeKind

    @property
    def canonical_id(self) -> str:
        # Removed units survive as their 2023 destination, created units as their 2019 parent
        return self.new_id if self.kind is ChangeKind.REMOVED else self.old_id
