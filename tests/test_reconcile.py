import numpy as np
import pandas as pd
import pytest

from tract_processing.errors import MalformedChangeEvent, UnmatchedIdentifierError
from tract_processing.models import ChangeKind, CrosswalkEntry
from tract_processing.reconcile import IdentifierReconciler

REMOVED = [CrosswalkEntry("01001", "01002", ChangeKind.REMOVED)]
CREATED = [CrosswalkEntry("01003", "01004", ChangeKind.CREATED)]


def test_removed_records_are_summed_into_destination():
    records = pd.DataFrame({"unit_id": ["01001", "01002"], "population": [100, 400]})

    result = IdentifierReconciler().reconcile_old_to_new(records, REMOVED)

    assert result.to_dict("records") == [{"unit_id": "01002", "population": 500}]


def test_created_records_are_summed_into_parent():
    records = pd.DataFrame({
        "unit_id": ["01003", "01004", "01002"],
        "votes_a": [10, 5, 7],
        "votes_b": [1, 2, 3],
    })

    result = IdentifierReconciler().reconcile_new_to_old(records, CREATED)

    by_id = result.set_index("unit_id")
    assert sorted(by_id.index) == ["01002", "01003"]
    assert by_id.loc["01003", "votes_a"] == 15
    assert by_id.loc["01003", "votes_b"] == 3
    # Sums are conserved
    assert by_id["votes_a"].sum() == records["votes_a"].sum()


def test_non_numeric_columns_keep_first_value_and_column_order():
    records = pd.DataFrame({
        "name": ["north", "south"],
        "unit_id": ["01001", "01002"],
        "count": [1, 2],
    })

    result = IdentifierReconciler().reconcile_old_to_new(records, REMOVED)

    assert list(result.columns) == ["name", "unit_id", "count"]
    assert result.iloc[0]["name"] == "north"
    assert result.iloc[0]["count"] == 3


def test_all_missing_group_stays_missing():
    records = pd.DataFrame({"unit_id": ["01001", "01002"], "turnout": [np.nan, np.nan]})

    result = IdentifierReconciler().reconcile_old_to_new(records, REMOVED)

    assert pd.isna(result.iloc[0]["turnout"])


def test_reconcile_is_idempotent_on_unique_unmapped_ids():
    records = pd.DataFrame({"unit_id": ["01002", "01007"], "population": [5, 6]})
    reconciler = IdentifierReconciler()

    once = reconciler.reconcile_old_to_new(records, REMOVED)
    twice = reconciler.reconcile_old_to_new(once, REMOVED)

    pd.testing.assert_frame_equal(once, records)
    pd.testing.assert_frame_equal(twice, once)


def test_chains_are_followed():
    chain = [
        CrosswalkEntry("01001", "01002", ChangeKind.REMOVED),
        CrosswalkEntry("01002", "01006", ChangeKind.REMOVED),
    ]
    records = pd.DataFrame({"unit_id": ["01001", "01006"], "population": [1, 2]})

    result = IdentifierReconciler().reconcile_old_to_new(records, chain)

    assert result.to_dict("records") == [{"unit_id": "01006", "population": 3}]


def test_cycle_is_rejected():
    cycle = [
        CrosswalkEntry("01001", "01002", ChangeKind.REMOVED),
        CrosswalkEntry("01002", "01001", ChangeKind.REMOVED),
    ]
    records = pd.DataFrame({"unit_id": ["01001"], "population": [1]})

    with pytest.raises(MalformedChangeEvent, match="cycle"):
        IdentifierReconciler().reconcile_old_to_new(records, cycle)


def test_null_ids_are_rejected():
    records = pd.DataFrame({"unit_id": ["01001", None], "population": [1, 2]})

    with pytest.raises(UnmatchedIdentifierError):
        IdentifierReconciler().reconcile_old_to_new(records, REMOVED)


def test_opposite_vintage_check_reports_orphans():
    records = pd.DataFrame({"unit_id": ["01001", "01009"], "population": [1, 2]})

    with pytest.raises(UnmatchedIdentifierError) as exc:
        IdentifierReconciler().reconcile_old_to_new(records, REMOVED, opposite_ids={"01002"})

    assert exc.value.identifiers == ["01009"]


def test_check_convergence_both_directions():
    reconciler = IdentifierReconciler()
    reconciler.check_convergence(["01002", "01003"], ["01003", "01002"])

    with pytest.raises(UnmatchedIdentifierError) as exc:
        reconciler.check_convergence(["01002"], ["01002", "01004"])

    assert exc.value.identifiers == ["01004"]


def test_rekey_preserves_rows_and_other_columns():
    records = pd.DataFrame({"unit_id": ["01004", "01003"], "label": ["x", "y"]})

    result = IdentifierReconciler().rekey(records, {"01004": "01003"})

    assert result["unit_id"].tolist() == ["01003", "01003"]
    assert result["label"].tolist() == ["x", "y"]
    assert records["unit_id"].tolist() == ["01004", "01003"]
