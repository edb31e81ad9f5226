import pytest

from taskscope.services.batch import UNBOUNDED, analysis_limit, should_analyze


@pytest.mark.parametrize("saved,expected", [(1, False), (9, False), (10, True), (20, True), (21, False)])
def test_batch_fires_on_multiples(saved, expected):
    assert should_analyze("batch", saved, 10, analyzing=False) is expected


def test_batch_ignores_in_flight_pass():
    assert should_analyze("batch", 10, 10, analyzing=True)


def test_batch_size_is_clamped():
    # 0 clamps to 1, so every tick fires
    assert should_analyze("batch", 3, 0, analyzing=False)
    # 500 clamps to 100
    assert should_analyze("batch", 100, 500, analyzing=False)
    assert analysis_limit("batch", 500) == 100


def test_realtime_is_single_flight():
    assert should_analyze("realtime", 1, 10, analyzing=False)
    assert not should_analyze("realtime", 1, 10, analyzing=True)


def test_limits():
    assert analysis_limit("realtime", 25) == 1
    assert analysis_limit("batch", 25) == 25
    assert UNBOUNDED == 0
