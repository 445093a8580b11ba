"""Period time-window gates (visibility, signup, modify)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from shiftengine.domain.models import Period
from shiftengine.errors import ValidationFailed, WindowClosed

VISIBILITY = "visibility"
SIGNUP = "signup"
MODIFY = "modify"

_WINDOW_FIELDS = {
    VISIBILITY: ("visible_start", "visible_end"),
    SIGNUP: ("signup_start", "signup_end"),
    MODIFY: ("modify_start", "modify_end"),
}

_CLOSED_MESSAGES = {
    VISIBILITY: "This period is not currently visible",
    SIGNUP: "Shift registration is not currently allowed. Please check the signup window for this period.",
    MODIFY: "Shift modifications are not currently allowed for this period",
}


def window_bounds(period: Period, window: str) -> Tuple[Optional[datetime], Optional[datetime]]:
    start_field, end_field = _WINDOW_FIELDS[window]
    return getattr(period, start_field), getattr(period, end_field)


def is_window_open(period: Period, window: str, now: datetime) -> bool:
    """
    Check whether `now` falls inside a period window.

    A window only restricts when both endpoints are configured; the bounds are
    inclusive on both sides.
    """
    start, end = window_bounds(period, window)
    if start is None or end is None:
        return True
    return start <= now <= end


def require_window(period: Period, window: str, now: datetime) -> None:
    """Raise WindowClosed when the given window is configured and `now` is outside it."""
    if not is_window_open(period, window, now):
        start, end = window_bounds(period, window)
        raise WindowClosed(
            _CLOSED_MESSAGES[window],
            period_id=period.id,
            window=window,
            start=start,
            end=end,
        )


def validate_period_bounds(
    start: datetime,
    end: datetime,
    visible: Tuple[Optional[datetime], Optional[datetime]] = (None, None),
    signup: Tuple[Optional[datetime], Optional[datetime]] = (None, None),
    modify: Tuple[Optional[datetime], Optional[datetime]] = (None, None),
) -> None:
    """
    Validate a period range and each configured window pair.

    Raises:
        ValidationFailed: If start >= end or any configured window is inverted
    """
    if start is None or end is None:
        raise ValidationFailed("Period start and end are required")
    if start >= end:
        raise ValidationFailed("Start must be before end")
    for label, (window_start, window_end) in (("visible", visible), ("signup", signup), ("modify", modify)):
        if window_start is not None and window_end is not None and window_start >= window_end:
            raise ValidationFailed(f"{label.capitalize()} start must be before {label} end")
