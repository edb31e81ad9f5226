import asyncio
from datetime import datetime, timedelta

import pytest
from unittest.mock import Mock

from taskscope.models import MonitorInfo
from taskscope.services.errors import SaveError
from taskscope.services.monitor_state import MonitorStateTable
from taskscope.services.scheduler import CaptureScheduler, CaptureState
from conftest import FakeCaptureProvider, half_image


class StepClock:
    """Advances 30 seconds on every read"""

    def __init__(self, start=datetime(2024, 5, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now += timedelta(seconds=30)
        return current


@pytest.fixture
def provider():
    monitors = [
        MonitorInfo(id=1, name="Laptop", x=0, y=0, width=64, height=64, is_primary=True),
        MonitorInfo(id=2, name="External", x=64, y=0, width=64, height=64),
    ]
    frames = {
        1: [half_image("left"), half_image("top"), half_image("right")],
        2: [half_image("bottom")],
    }
    return FakeCaptureProvider(monitors, frames)


@pytest.fixture
def make_scheduler(db, image_manager, provider):
    def factory(trigger=None, analyzing=False, sleep=None):
        db.set_setting("capture_monitor_mode", "all")
        scheduler = CaptureScheduler(
            provider,
            db,
            image_manager,
            MonitorStateTable(),
            is_analyzing=lambda: analyzing,
            trigger_analysis=trigger or Mock(),
            sleep=sleep or asyncio.sleep,
            clock=StepClock(),
        )
        scheduler.session_id = db.create_session()
        return scheduler
    return factory


def shots_for_monitor(db, session_id, monitor_id):
    return [s for s in db.get_session_screenshots(session_id) if s.monitor_index == monitor_id]


def test_only_changed_monitors_are_saved(db, image_manager, make_scheduler):
    scheduler = make_scheduler()
    sid = scheduler.session_id

    results = [scheduler.tick() for _ in range(4)]

    assert [r.saved for r in results] == [2, 1, 1, 0]
    assert [r.captured for r in results] == [2, 2, 2, 2]
    assert len(shots_for_monitor(db, sid, 1)) == 3
    assert len(shots_for_monitor(db, sid, 2)) == 1
    assert scheduler.capture_count == 4


def test_first_tick_layout(db, image_manager, make_scheduler):
    scheduler = make_scheduler()
    result = scheduler.tick()

    assert result.capture_group == "2024-05-01T09-00-00"
    group = db.get_capture_group(result.capture_group)
    assert [s.filepath for s in group] == [
        "screenshots/screenshot_2024-05-01T09-00-00_mon1.webp",
        "screenshots/screenshot_2024-05-01T09-00-00_mon2.webp",
    ]
    assert all(s.captured_at == "2024-05-01T09:00:00" for s in group)
    assert all(image_manager.resolve(s.filepath).exists() for s in group)
    assert scheduler.monitors.display_name(2) == "External"


def test_single_monitor_filename(db, make_scheduler):
    scheduler = make_scheduler()
    db.set_setting("capture_monitor_mode", "default")
    result = scheduler.tick()
    assert db.get_screenshot(result.screenshot_ids[0]).filepath == (
        "screenshots/screenshot_2024-05-01T09-00-00.webp"
    )


def test_save_failure_skips_monitor_and_keeps_it_changed(db, image_manager, make_scheduler):
    scheduler = make_scheduler()
    image_manager.save_screenshot = Mock(side_effect=SaveError("disk full"))

    result = scheduler.tick()

    assert result.saved == 0
    assert db.get_screenshot_count() == 0
    assert scheduler.monitors.last_hash(1) is None
    assert scheduler.capture_count == 0


def test_missing_specific_monitor_skips_tick(db, make_scheduler):
    scheduler = make_scheduler()
    db.set_setting("capture_monitor_mode", "specific")
    db.set_setting("capture_monitor_id", "7")

    result = scheduler.tick()

    assert (result.captured, result.saved) == (0, 0)
    assert db.get_screenshot_count() == 0


def test_batch_policy_triggers_with_limit(db, make_scheduler):
    trigger = Mock()
    scheduler = make_scheduler(trigger=trigger)
    db.set_setting("batch_size", "2")

    for _ in range(3):
        scheduler.tick()

    # Running totals 2, 3, 4
    assert trigger.call_count == 2
    trigger.assert_called_with(scheduler.session_id, 2)


def test_realtime_policy_respects_in_flight_pass(db, make_scheduler):
    busy = make_scheduler(trigger=Mock(), analyzing=True)
    db.set_setting("analysis_mode", "realtime")
    busy.tick()
    busy.trigger_analysis.assert_not_called()

    idle = make_scheduler(trigger=Mock(), analyzing=False)
    idle.tick()
    idle.trigger_analysis.assert_called_once_with(idle.session_id, 1)


@pytest.mark.asyncio
async def test_loop_sleeps_between_ticks_and_stops_promptly(db, make_scheduler):
    sleeps = []
    third_sleep = asyncio.Event()

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) >= 3:
            third_sleep.set()
            await asyncio.Event().wait()

    scheduler = make_scheduler(sleep=fake_sleep)
    sid = scheduler.session_id
    assert scheduler.start(sid, 30)
    assert not scheduler.start(sid, 30)

    await asyncio.wait_for(third_sleep.wait(), timeout=5)
    await asyncio.wait_for(scheduler.stop(), timeout=5)

    assert scheduler.state is CaptureState.IDLE
    assert sleeps == [30, 30, 30]
    assert len(shots_for_monitor(db, sid, 1)) == 3
    assert len(shots_for_monitor(db, sid, 2)) == 1
