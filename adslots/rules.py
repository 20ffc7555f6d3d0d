"""Status and display policies applied to occupancy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from adslots.schema import OccupancyLevel, PipelineStatus

# First match wins, highest threshold first.
OCCUPANCY_THRESHOLDS: tuple[tuple[float, OccupancyLevel], ...] = (
    (1.0, OccupancyLevel.FULL),
    (0.8, OccupancyLevel.HIGH),
    (0.5, OccupancyLevel.MEDIUM),
    (0.0, OccupancyLevel.LOW),
)

LEVEL_ORDER = {level: rank for rank, (_, level) in enumerate(reversed(OCCUPANCY_THRESHOLDS))}


def classify_occupancy(rate: float) -> OccupancyLevel:
    if rate < 0:
        raise ValueError(f"Occupancy rate cannot be negative: {rate}.")
    for threshold, level in OCCUPANCY_THRESHOLDS:
        if rate >= threshold:
            return level
    return OccupancyLevel.LOW


def busiest_level(levels: Iterable[OccupancyLevel]) -> OccupancyLevel:
    return max(levels, key=LEVEL_ORDER.__getitem__, default=OccupancyLevel.LOW)


@dataclass(frozen=True)
class StatusPolicy:
    """Decides which pipeline statuses hold a slot position."""

    occupying: frozenset[str]

    @classmethod
    def of(cls, statuses: Iterable[str | PipelineStatus]) -> "StatusPolicy":
        values = frozenset(s.value if isinstance(s, PipelineStatus) else str(s).strip() for s in statuses)
        if not values:
            raise ValueError("A status policy needs at least one occupying status.")
        return cls(occupying=values)

    def occupies(self, status: str | PipelineStatus | None) -> bool:
        if status is None:
            return False
        if isinstance(status, PipelineStatus):
            status = status.value
        return status.strip() in self.occupying

    def __call__(self, status: str | PipelineStatus | None) -> bool:
        return self.occupies(status)


CONFIRMED_ONLY = StatusPolicy.of((PipelineStatus.BOOKED, PipelineStatus.RUNNING))
