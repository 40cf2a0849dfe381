import pytest

from tract_processing.change_parser import UnitChangeParser
from tract_processing.crosswalk import CROSSWALK_COLUMNS, CrosswalkBuilder
from tract_processing.errors import MalformedChangeEvent
from tract_processing.models import ChangeEvent, ChangeKind, CrosswalkEntry


def removal(unit, destination, entry=1990, exit=2020):
    return ChangeEvent(unit, None, destination, entry, exit)


def creation(unit, origin, entry=2021, exit=9999):
    return ChangeEvent(unit, origin, None, entry, exit)


def test_removed_unit_maps_to_destination():
    entries = CrosswalkBuilder(2019, 2023).build([removal("01001", "01002")])

    assert entries == [CrosswalkEntry("01001", "01002", ChangeKind.REMOVED)]
    assert entries[0].canonical_id == "01002"


def test_created_unit_maps_back_to_origin():
    entries = CrosswalkBuilder(2019, 2023).build([creation("01004", "01003")])

    assert entries == [CrosswalkEntry("01003", "01004", ChangeKind.CREATED)]
    assert entries[0].canonical_id == "01003"


def test_window_is_inclusive_on_entry_or_exit():
    events = [
        removal("01001", "01002", entry=1990, exit=2019),
        creation("01004", "01003", entry=2023),
        removal("01009", "01008", entry=1990, exit=2018),
        creation("01010", "01011", entry=2024),
    ]

    entries = CrosswalkBuilder(2019, 2023).build(events)

    assert {e.old_id for e in entries} == {"01001", "01003"}


def test_build_from_parsed_register(change_register):
    events = UnitChangeParser().parse_frame(change_register)

    entries = CrosswalkBuilder(2019, 2023).build(events)

    assert CrosswalkBuilder.removed(entries) == [
        CrosswalkEntry("01001", "01002", ChangeKind.REMOVED)
    ]
    assert CrosswalkBuilder.created(entries) == [
        CrosswalkEntry("01003", "01004", ChangeKind.CREATED)
    ]


def test_event_with_both_relations_is_rejected():
    event = ChangeEvent("01005", "01003", "01002", 2020, 2021)

    with pytest.raises(MalformedChangeEvent):
        CrosswalkBuilder(2019, 2023).build([event])


def test_inverted_window_is_rejected():
    with pytest.raises(ValueError):
        CrosswalkBuilder(2023, 2019)


def test_as_mapping_directions():
    entries = [
        CrosswalkEntry("01001", "01002", ChangeKind.REMOVED),
        CrosswalkEntry("01003", "01004", ChangeKind.CREATED),
        CrosswalkEntry("01003", "01005", ChangeKind.CREATED),
    ]

    assert CrosswalkBuilder.as_mapping(entries, ChangeKind.REMOVED) == {"01001": "01002"}
    # Several split-outs may share one parent
    assert CrosswalkBuilder.as_mapping(entries, ChangeKind.CREATED) == {
        "01004": "01003",
        "01005": "01003",
    }


def test_as_mapping_rejects_conflicting_targets():
    entries = [
        CrosswalkEntry("01001", "01002", ChangeKind.REMOVED),
        CrosswalkEntry("01001", "01006", ChangeKind.REMOVED),
    ]

    with pytest.raises(MalformedChangeEvent) as exc:
        CrosswalkBuilder.as_mapping(entries, ChangeKind.REMOVED)

    assert exc.value.identifiers == ["01001"]


def test_to_frame_columns():
    frame = CrosswalkBuilder.to_frame([CrosswalkEntry("01001", "01002", ChangeKind.REMOVED)])

    assert list(frame.columns) == CROSSWALK_COLUMNS
    assert frame.iloc[0].tolist() == ["01001", "01002", "Removed"]
