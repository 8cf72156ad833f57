"""
Time-of-day windows and the interval arithmetic the slot generator is built on.

Windows are half-open: ``[start, end)``. Two windows that merely touch do not
overlap, but ``merge`` still joins them into one continuous window.

Windows live inside a single day and use ``datetime.time``, so the latest
representable end is 23:59. Availability cannot run to midnight; a rule ending
at 23:59 loses any final slot that would need the last minute.
"""

from dataclasses import dataclass
from datetime import time
from typing import Iterable, List

from careslot.scheduling.errors import InvalidWindow

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise InvalidWindow(f'{minutes} minutes is outside a single day')
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True, order=True)
class TimeWindow:
    """
    Immutable time-of-day window at minute resolution.

    Invariant: start must be before end.
    """
    start: time
    end: time

    def __post_init__(self):
        for value in (self.start, self.end):
            if value.second or value.microsecond or value.tzinfo is not None:
                raise InvalidWindow(f'{value} is not a naive minute-resolution time')
        if self.start >= self.end:
            raise InvalidWindow(f'Start time {self.start:%H:%M} must be before end time {self.end:%H:%M}')

    @classmethod
    def from_minutes(cls, start: int, end: int) -> "TimeWindow":
        return cls(from_minutes(start), from_minutes(end))

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def __str__(self) -> str:
        return f'{self.start:%H:%M}-{self.end:%H:%M}'


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    return a.start < b.end and b.start < a.end


def contains(outer: TimeWindow, inner: TimeWindow) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def subtract(base: TimeWindow, cut: TimeWindow) -> List[TimeWindow]:
    """Return what is left of ``base`` after removing ``cut``: zero, one or two windows."""
    if not overlaps(base, cut):
        return [base]

    remainder: List[TimeWindow] = []
    if base.start < cut.start:
        remainder.append(TimeWindow(base.start, cut.start))
    if cut.end < base.end:
        remainder.append(TimeWindow(cut.end, base.end))
    return remainder


def subtract_all(windows: Iterable[TimeWindow], cut: TimeWindow) -> List[TimeWindow]:
    result: List[TimeWindow] = []
    for window in windows:
        result.extend(subtract(window, cut))
    return result


def merge(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Sort by start and join windows that overlap or touch."""
    merged: List[TimeWindow] = []
    for window in sorted(windows):
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            if window.end > last.end:
                merged[-1] = TimeWindow(last.start, window.end)
            continue
        merged.append(window)
    return merged
