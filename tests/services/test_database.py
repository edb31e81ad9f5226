import pytest

from taskscope.models import TaskUpdate


def add_shot(db, session_id, captured_at, group=None, monitor=0, name=None):
    return db.insert_screenshot(
        f"screenshots/{name or captured_at}.webp",
        captured_at,
        monitor_index=monitor,
        session_id=session_id,
        capture_group=group,
    )


def test_screenshot_roundtrip(db):
    sid = db.create_session(description="write report", started_at="2024-05-01T09:00:00")
    shot_id = add_shot(db, sid, "2024-05-01T09:00:30", group="2024-05-01T09-00-30", monitor=2)
    shot = db.get_screenshot(shot_id)
    assert shot.filepath == "screenshots/2024-05-01T09:00:30.webp"
    assert shot.session_id == sid
    assert shot.monitor_index == 2
    assert shot.capture_group == "2024-05-01T09-00-30"
    assert db.get_screenshot_session_id(shot_id) == sid
    assert db.get_screenshot_count() == 1


def test_unanalyzed_excludes_linked_and_respects_limit(db):
    sid = db.create_session()
    first = add_shot(db, sid, "2024-05-01T09:00:00")
    second = add_shot(db, sid, "2024-05-01T09:00:30")
    third = add_shot(db, sid, "2024-05-01T09:01:00")
    task_id = db.insert_task("Coding", "Fixing tests", "coding", "2024-05-01T09:00:00")
    db.link_screenshot_to_task(task_id, first)

    assert [s.id for s in db.get_unanalyzed_screenshots()] == [second, third]
    assert [s.id for s in db.get_unanalyzed_screenshots(limit=1)] == [second]
    assert [s.id for s in db.get_unanalyzed_screenshots_for_session(sid, 0)] == [second, third]


def test_link_is_idempotent(db):
    sid = db.create_session()
    shot_id = add_shot(db, sid, "2024-05-01T09:00:00")
    task_id = db.insert_task("Coding", None, None, "2024-05-01T09:00:00")
    db.link_screenshot_to_task(task_id, shot_id)
    db.link_screenshot_to_task(task_id, shot_id)
    assert [s.id for s in db.get_task_screenshots(task_id)] == [shot_id]
    assert db.get_task_for_screenshot(shot_id).id == task_id


def test_tasks_are_listed_newest_first(db):
    older = db.insert_full_task("A", "a", "coding", "2024-05-01T09:00:00", "because")
    newer = db.insert_full_task("B", "b", "writing", "2024-05-01T10:00:00", None)
    assert [t.id for t in db.get_tasks(10, 0)] == [newer, older]
    assert db.get_latest_task().id == newer
    assert db.get_task(older).ai_reasoning == "because"


def test_latest_task_is_the_last_created_not_the_last_started(db):
    later_start = db.insert_task("Afternoon", None, None, "2024-05-01T15:00:00")
    backfilled = db.insert_task("Morning", None, None, "2024-05-01T09:00:00")
    assert db.get_tasks(10, 0)[0].id == later_start
    assert db.get_latest_task().id == backfilled


def test_update_and_delete_task(db):
    task_id = db.insert_task("Draft", "first pass", "writing", "2024-05-01T09:00:00")
    updated = db.update_task(task_id, TaskUpdate(title="Final draft", user_verified=True))
    assert updated.title == "Final draft"
    assert updated.description == "first pass"
    assert updated.user_verified is True
    assert db.delete_task(task_id)
    assert not db.delete_task(task_id)
    assert db.get_task(task_id) is None


def test_session_lifecycle_and_counts(db):
    sid = db.create_session(description="research", title="Monday")
    assert db.get_open_session().id == sid
    a = add_shot(db, sid, "2024-05-01T09:00:00")
    add_shot(db, sid, "2024-05-01T09:00:30")
    task_id = db.insert_task("Reading", None, None, "2024-05-01T09:00:00")
    db.link_screenshot_to_task(task_id, a)

    session = db.get_session(sid)
    assert session.is_open
    assert session.screenshot_count == 2
    assert session.unanalyzed_count == 1
    assert db.get_pending_sessions() == []

    ended_at = db.end_session(sid, "2024-05-01T10:00:00")
    assert ended_at == "2024-05-01T10:00:00"
    assert db.get_open_session() is None
    assert [s.id for s in db.get_pending_sessions()] == [sid]
    assert db.get_completed_sessions() == []


def test_completed_session_has_everything_analyzed(db):
    sid = db.create_session()
    shot_id = add_shot(db, sid, "2024-05-01T09:00:00")
    task_id = db.insert_task("Reading", None, None, "2024-05-01T09:00:00")
    db.link_screenshot_to_task(task_id, shot_id)
    db.end_session(sid)
    assert [s.id for s in db.get_completed_sessions()] == [sid]
    assert [t.id for t in db.get_session_tasks(sid)] == [task_id]


def test_recent_tasks_for_session(db):
    sid = db.create_session()
    ids = []
    for minute in range(3):
        shot_id = add_shot(db, sid, f"2024-05-01T09:0{minute}:00")
        task_id = db.insert_task(f"T{minute}", None, None, f"2024-05-01T09:0{minute}:00")
        db.link_screenshot_to_task(task_id, shot_id)
        ids.append(task_id)
    assert [t.id for t in db.get_recent_tasks_for_session(sid, 2)] == [ids[2], ids[1]]


def test_delete_session_keeps_tasks_shared_with_other_sessions(db):
    doomed = db.create_session()
    kept = db.create_session()
    a1 = add_shot(db, doomed, "2024-05-01T09:00:00", name="a1")
    a2 = add_shot(db, doomed, "2024-05-01T09:00:30", name="a2")
    b1 = add_shot(db, kept, "2024-05-01T11:00:00", name="b1")

    only_doomed = db.insert_task("Task 1", None, None, "2024-05-01T09:00:00")
    shared = db.insert_task("Task 2", None, None, "2024-05-01T09:00:30")
    db.link_screenshot_to_task(only_doomed, a1)
    db.link_screenshot_to_task(shared, a2)
    db.link_screenshot_to_task(shared, b1)
    unlinked = db.insert_task("Task 3", None, None, "2024-05-01T12:00:00")

    paths = db.delete_session(doomed)

    assert sorted(paths) == ["screenshots/a1.webp", "screenshots/a2.webp"]
    assert db.get_session(doomed) is None
    assert db.get_task(only_doomed) is None
    assert db.get_task(shared) is not None
    assert db.get_task(unlinked) is not None
    assert [s.id for s in db.get_task_screenshots(shared)] == [b1]
    assert db.get_screenshot(a1) is None


def test_delete_unanalyzed_returns_paths(db):
    sid = db.create_session()
    linked = add_shot(db, sid, "2024-05-01T09:00:00", name="linked")
    add_shot(db, sid, "2024-05-01T09:00:30", name="loose")
    task_id = db.insert_task("T", None, None, "2024-05-01T09:00:00")
    db.link_screenshot_to_task(task_id, linked)

    assert db.delete_unanalyzed_screenshots() == ["screenshots/loose.webp"]
    assert db.get_screenshot_count() == 1


def test_capture_group_lookup(db):
    sid = db.create_session()
    add_shot(db, sid, "2024-05-01T09:00:00", group="g", monitor=2, name="m2")
    add_shot(db, sid, "2024-05-01T09:00:00", group="g", monitor=1, name="m1")
    assert [s.monitor_index for s in db.get_capture_group("g")] == [1, 2]


def test_settings_upsert(db):
    assert db.get_setting("batch_size") is None
    db.set_setting("batch_size", "5")
    db.set_setting("batch_size", "7")
    assert db.get_setting("batch_size") == "7"
    assert db.get_all_settings() == {"batch_size": "7"}
