from taskscope.models import MonitorState
from taskscope.services.monitor_state import MonitorStateTable


def test_update_hash_creates_entry_with_fallback_name():
    table = MonitorStateTable()
    table.update_hash(3, "h1")
    assert table.display_name(3) == "Monitor 3"
    assert table.last_hash(3) == "h1"


def test_update_hash_keeps_summary_and_refreshes_name():
    table = MonitorStateTable()
    table.insert(1, MonitorState(last_hash="h0", name="Display 1", last_summary="editing code"))
    table.update_hash(1, "h1", "Built-in")
    state = table.get(1)
    assert state.last_hash == "h1"
    assert state.name == "Built-in"
    assert state.last_summary == "editing code"

    table.update_hash(1, "h2")
    assert table.get(1).name == "Built-in"


def test_summary_by_name_fans_out_to_duplicates():
    table = MonitorStateTable()
    table.update_hash(1, "a", "Dell U2720Q")
    table.update_hash(2, "b", "Dell U2720Q")
    table.update_hash(3, "c", "Laptop")
    assert table.update_summary_by_name("Dell U2720Q", "reading docs") == 2
    assert table.get(1).last_summary == "reading docs"
    assert table.get(2).last_summary == "reading docs"
    assert table.get(3).last_summary == ""
    assert table.update_summary_by_name("Unknown", "x") == 0


def test_unchanged_summaries_skip_excluded_and_empty():
    table = MonitorStateTable()
    table.update_hash(1, "a", "Left")
    table.update_hash(2, "b", "Right")
    table.update_hash(3, "c", "Top")
    table.update_summary(2, "slack")
    table.update_summary(1, "ide")
    assert table.unchanged_summaries([1]) == [(2, "Right", "slack")]


def test_get_returns_copy_and_clear_resets():
    table = MonitorStateTable()
    table.update_hash(1, "a", "Left")
    table.get(1).last_summary = "mutated"
    assert table.get(1).last_summary == ""
    table.clear()
    assert len(table) == 0
    assert table.get(1) is None
