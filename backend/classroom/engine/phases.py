"""Session phase state machine and test clock arithmetic.

Phases run ``lobby -> testing -> analyzing -> lesson -> retest -> complete``.
``paused`` is a sub-state of ``testing``. The service layer applies the
transitions computed here to the stored session row.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..core.errors import PhaseError


class SessionStatus(str, Enum):
    LOBBY = "lobby"
    TESTING = "testing"
    PAUSED = "paused"
    ANALYZING = "analyzing"
    LESSON = "lesson"
    RETEST = "retest"
    COMPLETE = "complete"


# Where "advance" goes from each effective status. analyzing and lesson are
# both retest-bound; complete has no successor.
_NEXT_PHASE = {
    SessionStatus.LOBBY: SessionStatus.TESTING,
    SessionStatus.TESTING: SessionStatus.ANALYZING,
    SessionStatus.ANALYZING: SessionStatus.RETEST,
    SessionStatus.LESSON: SessionStatus.RETEST,
    SessionStatus.RETEST: SessionStatus.COMPLETE,
}

JOINABLE = frozenset({SessionStatus.LOBBY, SessionStatus.TESTING, SessionStatus.PAUSED})
TEST_ACTIVE = frozenset({SessionStatus.TESTING, SessionStatus.PAUSED})


class SideEffect(str, Enum):
    START_ANALYSIS = "start_analysis"
    PREPARE_RETESTS = "prepare_retests"


@dataclass
class Transition:
    """Result of a phase operation: the new status plus column updates."""

    from_status: SessionStatus
    to_status: SessionStatus
    updates: dict[str, Any] = field(default_factory=dict)
    side_effects: list[SideEffect] = field(default_factory=list)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from stores that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, int((as_utc(end) - as_utc(start)).total_seconds() * 1000))


def parse_status(raw: str) -> Optional[SessionStatus]:
    try:
        return SessionStatus(raw)
    except ValueError:
        return None


def effective_status(status: SessionStatus) -> SessionStatus:
    return SessionStatus.TESTING if status is SessionStatus.PAUSED else status


def next_phase(raw_status: str) -> SessionStatus:
    """Phase that "advance" moves to, or PhaseError when there is none."""
    status = parse_status(raw_status)
    target = _NEXT_PHASE.get(effective_status(status)) if status else None
    if target is None:
        raise PhaseError("Cannot advance further")
    return target


def plan_advance(
    raw_status: str,
    paused_at: Optional[datetime],
    total_paused_ms: int,
    now: Optional[datetime] = None,
) -> Transition:
    """Work out the advance transition and its side effects."""
    now = now or utcnow()
    current = parse_status(raw_status)
    target = next_phase(raw_status)
    transition = Transition(from_status=current, to_status=target, updates={"status": target.value})

    if current is SessionStatus.PAUSED:
        # Leaving the test while paused still closes the pause
        transition.updates.update(_close_pause(paused_at, total_paused_ms, now))

    if target is SessionStatus.TESTING:
        transition.updates["test_started_at"] = now
    elif target is SessionStatus.ANALYZING:
        transition.side_effects.append(SideEffect.START_ANALYSIS)
    elif target is SessionStatus.RETEST:
        transition.side_effects.append(SideEffect.PREPARE_RETESTS)

    return transition


def plan_toggle_pause(
    raw_status: str,
    paused_at: Optional[datetime],
    total_paused_ms: int,
    now: Optional[datetime] = None,
) -> Transition:
    """Pause a running test or resume a paused one."""
    now = now or utcnow()
    current = parse_status(raw_status)

    if current is SessionStatus.TESTING:
        return Transition(
            from_status=current,
            to_status=SessionStatus.PAUSED,
            updates={"status": SessionStatus.PAUSED.value, "paused_at": now},
        )

    if current is SessionStatus.PAUSED:
        updates = {"status": SessionStatus.TESTING.value}
        updates.update(_close_pause(paused_at, total_paused_ms, now))
        return Transition(from_status=current, to_status=SessionStatus.TESTING, updates=updates)

    raise PhaseError("Can only pause/resume during testing")


def _close_pause(paused_at: Optional[datetime], total_paused_ms: int, now: datetime) -> dict[str, Any]:
    pause_ms = elapsed_ms(paused_at, now) if paused_at else 0
    return {"paused_at": None, "total_paused_ms": (total_paused_ms or 0) + pause_ms}


def remaining_time_ms(
    test_started_at: Optional[datetime],
    duration_minutes: int,
    total_paused_ms: int = 0,
    paused_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Milliseconds left on the test clock; None before the test starts.

    Finished pauses and the pause in progress both push the deadline back.
    """
    if test_started_at is None:
        return None

    now = as_utc(now or utcnow())
    started = as_utc(test_started_at)
    deadline_ms = duration_minutes * 60_000 + (total_paused_ms or 0)
    if paused_at is not None:
        deadline_ms += elapsed_ms(paused_at, now)

    spent_ms = (now - started).total_seconds() * 1000
    return max(0, int(deadline_ms - spent_ms))


def format_time(ms: int) -> str:
    """Render a countdown as ``H:MM:SS`` or ``M:SS``."""
    total_seconds = ms // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
