"""
reconcile.py

Applies the crosswalk to per-unit datasets so both boundary vintages end up
keyed by one canonical identifier space.

Source tables hold absolute counts, so records that collapse onto the same
canonical unit are always summed, never averaged.
"""

from typing import Collection, Dict, Iterable, Optional

import pandas as pd
from loguru import logger

from .crosswalk import CrosswalkBuilder
from .data_utils import numeric_columns, validate_required_columns
from .errors import MalformedChangeEvent, UnmatchedIdentifierError
from .models import ChangeKind, CrosswalkEntry


class IdentifierReconciler:
    """Rekey and aggregate per-unit records through crosswalk entries.

    Example:
        reconciler = IdentifierReconciler("unit_id")
        votes_2019 = reconciler.reconcile_old_to_new(raw_2019, removed_entries)
        votes_2023 = reconciler.reconcile_new_to_old(raw_2023, created_entries)
        reconciler.check_convergence(votes_2019["unit_id"], votes_2023["unit_id"])
    """

    def __init__(self, id_column: str = "unit_id"):
        self.id_column = id_column

    def reconcile_old_to_new(
        self,
        records: pd.DataFrame,
        removed_entries: Iterable[CrosswalkEntry],
        opposite_ids: Optional[Collection[str]] = None,
    ) -> pd.DataFrame:
        """Rekey 2019-vintage records onto the unit that absorbed them, then sum."""
        mapping = CrosswalkBuilder.as_mapping(removed_entries, ChangeKind.REMOVED)
        return self._reconcile(records, mapping, opposite_ids, "old→new")

    def reconcile_new_to_old(
        self,
        records: pd.DataFrame,
        created_entries: Iterable[CrosswalkEntry],
        opposite_ids: Optional[Collection[str]] = None,
    ) -> pd.DataFrame:
        """Rekey 2023-vintage records back onto their pre-split parent, then sum."""
        mapping = CrosswalkBuilder.as_mapping(created_entries, ChangeKind.CREATED)
        return self._reconcile(records, mapping, opposite_ids, "new→old")

    def _reconcile(
        self,
        records: pd.DataFrame,
        mapping: Dict[str, str],
        opposite_ids: Optional[Collection[str]],
        direction: str,
    ) -> pd.DataFrame:
        logger.debug(f"🔄 Reconciling {len(records):,} records ({direction})...")

        rekeyed = self.rekey(records, mapping)
        reconciled = self.aggregate(rekeyed)

        logger.debug(f"  ✅ {len(records):,} records → {len(reconciled):,} canonical units")

        if opposite_ids is not None:
            self.check_against(reconciled[self.id_column], opposite_ids, direction)
        return reconciled

    def rekey(self, records: pd.DataFrame, mapping: Dict[str, str]) -> pd.DataFrame:
        """Replace each id with its final target in ``mapping`` (chains are followed).

        Rows keep their position and every other column is untouched, so this
        also serves geometric layers ahead of :class:`GeometryMerger`.
        """
        validate_required_columns(records, [self.id_column], "Reconciliation input")

        null_ids = records[self.id_column].isna()
        if null_ids.any():
            raise UnmatchedIdentifierError(f"{int(null_ids.sum())} records have no unit identifier")

        if not mapping:
            return records.copy()

        resolved = records.copy()
        resolved[self.id_column] = resolved[self.id_column].map(
            lambda unit_id: self.resolve(unit_id, mapping)
        )
        changed = int((resolved[self.id_column] != records[self.id_column]).sum())
        logger.debug(f"  🔑 Rekeyed {changed:,} records")
        return resolved

    @staticmethod
    def resolve(unit_id: str, mapping: Dict[str, str]) -> str:
        seen = {unit_id}
        current = unit_id
        while current in mapping:
            current = mapping[current]
            if current in seen:
                raise MalformedChangeEvent("Crosswalk contains a cycle", seen)
            seen.add(current)
        return current

    def aggregate(self, records: pd.DataFrame) -> pd.DataFrame:
        """Group by id: sum numeric columns, keep the first present value elsewhere.

        Already-unique ids are returned unchanged.
        """
        if records[self.id_column].is_unique:
            return records.copy()

        sum_cols = numeric_columns(records, exclude=[self.id_column])
        other_cols = [
            col for col in records.columns
            if col not in sum_cols and col != self.id_column and col != "geometry"
        ]

        grouped = records.groupby(self.id_column, sort=False)
        # min_count=1 keeps an all-missing group missing instead of turning it into 0
        summed = grouped[sum_cols].sum(min_count=1) if sum_cols else None
        firsts = grouped[other_cols].first() if other_cols else None

        parts = [part for part in (summed, firsts) if part is not None]
        if parts:
            result = pd.concat(parts, axis=1)
        else:
            result = pd.DataFrame(index=grouped.size().index)

        result = result.reset_index()
        ordered = [col for col in records.columns if col in result.columns]
        return pd.DataFrame(result[ordered])

    def check_against(
        self, ids: Iterable[str], opposite_ids: Collection[str], context: str = ""
    ) -> None:
        """Anti-join ``ids`` against the opposite vintage's canonical id set."""
        opposite = set(opposite_ids)
        orphans = {unit_id for unit_id in ids if unit_id not in opposite}
        if orphans:
            label = f" ({context})" if context else ""
            logger.error(f"❌ {len(orphans)} identifiers have no counterpart{label}")
            raise UnmatchedIdentifierError(
                f"Identifiers missing from the opposite vintage{label}", orphans
            )

    def check_convergence(self, left_ids: Iterable[str], right_ids: Iterable[str]) -> None:
        """Both directions of the anti-join must be empty; orphans of either side are reported together."""
        left, right = set(left_ids), set(right_ids)
        orphans = (left - right) | (right - left)
        if orphans:
            logger.error(
                f"❌ Identifier spaces did not converge: {len(left - right)} old-only, "
                f"{len(right - left)} new-only"
            )
            raise UnmatchedIdentifierError("Identifier spaces did not converge", orphans)
        logger.debug(f"  ✅ Identifier spaces converged on {len(left):,} canonical units")
