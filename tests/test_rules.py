import pytest

from adslots.rules import CONFIRMED_ONLY, StatusPolicy, busiest_level, classify_occupancy
from adslots.schema import OccupancyLevel, PipelineStatus


@pytest.mark.parametrize(
    "rate, level",
    [
        (0.0, OccupancyLevel.LOW),
        (0.49, OccupancyLevel.LOW),
        (0.5, OccupancyLevel.MEDIUM),
        (0.625, OccupancyLevel.MEDIUM),
        (0.79, OccupancyLevel.MEDIUM),
        (0.8, OccupancyLevel.HIGH),
        (0.99, OccupancyLevel.HIGH),
        (1.0, OccupancyLevel.FULL),
        (1.25, OccupancyLevel.FULL),
    ],
)
def test_classify_occupancy(rate, level):
    assert classify_occupancy(rate) == level


def test_negative_rate_is_rejected():
    with pytest.raises(ValueError):
        classify_occupancy(-0.1)


def test_busiest_level():
    assert busiest_level([OccupancyLevel.LOW, OccupancyLevel.HIGH, OccupancyLevel.MEDIUM]) == OccupancyLevel.HIGH
    assert busiest_level([]) == OccupancyLevel.LOW


def test_confirmed_only_policy():
    assert CONFIRMED_ONLY.occupies("부킹확정")
    assert CONFIRMED_ONLY.occupies(PipelineStatus.RUNNING)
    assert not CONFIRMED_ONLY.occupies("문의중")
    assert not CONFIRMED_ONLY.occupies(PipelineStatus.PAID)
    assert not CONFIRMED_ONLY.occupies(None)


def test_policy_accepts_plain_strings():
    policy = StatusPolicy.of(["booked", " running "])
    assert policy("running")
    assert not policy("inquiry")


def test_empty_policy_is_rejected():
    with pytest.raises(ValueError):
        StatusPolicy.of([])
