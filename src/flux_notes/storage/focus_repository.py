"""Repository for focus sessions and focus statistics."""
import datetime
import logging
import math
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update

from flux_notes.exceptions import ErrorCode, ValidationError
from flux_notes.models.db_models import DBFocusSession
from flux_notes.models.schema import (FocusSession, FocusStats, FocusStatus,
                                      ensure_timezone_aware, generate_id,
                                      utc_now)
from flux_notes.storage.base import Repository
from flux_notes.utils import local_date, local_midnight, local_week_start

logger = logging.getLogger(__name__)

DEFAULT_SESSION_LIMIT = 100


def calculate_streaks(
    days: Iterable[datetime.date], today: datetime.date
) -> Tuple[int, int]:
    """Compute (current, longest) streaks of consecutive focus days.

    ``days`` are the local calendar days having at least one completed
    session. The walk goes from the most recent day backwards. The
    current streak only counts if the most recent day is today or
    yesterday, and ends at the first gap.

    Example:
        >>> today = datetime.date(2024, 3, 10)
        >>> calculate_streaks([today, today - datetime.timedelta(days=1)], today)
        (2, 2)
    """
    ordered = sorted(set(days), reverse=True)
    if not ordered:
        return 0, 0

    streak = 1
    current = 1 if (today - ordered[0]).days <= 1 else 0
    longest = streak

    for previous, day in zip(ordered, ordered[1:]):
        if (previous - day).days == 1:
            streak += 1
            if current > 0:
                current = streak
        else:
            longest = max(longest, streak)
            streak = 1
            current = 0
        longest = max(longest, streak)

    return current, longest


class FocusRepository(Repository):
    """Repository for focus sessions.

    Completed and cancelled sessions are terminal: updating, completing
    or cancelling them again returns them unchanged. Keeping a single
    running session is left to the caller (see FluxService).
    """

    @staticmethod
    def _db_session_to_model(db_session: DBFocusSession) -> FocusSession:
        """Convert a database row to a FocusSession."""
        return FocusSession(
            id=db_session.id,
            start_time=ensure_timezone_aware(db_session.start_time),
            end_time=ensure_timezone_aware(db_session.end_time),
            duration=db_session.duration,
            actual_duration=db_session.actual_duration or 0,
            status=FocusStatus(db_session.status),
            todo_id=db_session.todo_id,
            created_at=ensure_timezone_aware(db_session.created_at),
        )

    def start_session(self, duration: int, todo_id: Optional[str] = None) -> FocusSession:
        """Start a running session targeting ``duration`` seconds.

        Raises:
            ValidationError: If the duration is negative.
            ConstraintViolationError: If todo_id names no todo.
        """
        if duration is None or duration < 0:
            raise ValidationError(
                "Focus duration must be a non-negative number of seconds",
                field="duration",
                value=duration,
                code=ErrorCode.INVALID_FIELD,
            )

        now = utc_now()
        db_session = DBFocusSession(
            id=generate_id(),
            start_time=now,
            end_time=None,
            duration=int(duration),
            actual_duration=0,
            status=FocusStatus.RUNNING.value,
            todo_id=todo_id,
            created_at=now,
        )
        with self._transaction("start_focus_session") as session:
            session.add(db_session)
            session.flush()
            focus_session = self._db_session_to_model(db_session)

        logger.debug(f"Started focus session {focus_session.id} ({duration}s)")
        return focus_session

    def get_session(self, session_id: str) -> Optional[FocusSession]:
        with self.session_factory() as session:
            db_session = session.get(DBFocusSession, session_id)
            return self._db_session_to_model(db_session) if db_session else None

    def get_running_session(self) -> Optional[FocusSession]:
        """The running session, or None. The newest wins if several exist."""
        with self.session_factory() as session:
            db_session = session.scalar(
                select(DBFocusSession)
                .where(DBFocusSession.status == FocusStatus.RUNNING.value)
                .order_by(DBFocusSession.start_time.desc())
                .limit(1)
            )
            return self._db_session_to_model(db_session) if db_session else None

    def _update_running(self, session_id: str, operation: str, **values) -> Optional[FocusSession]:
        with self._transaction(operation) as session:
            session.execute(
                update(DBFocusSession)
                .where(
                    DBFocusSession.id == session_id,
                    DBFocusSession.status == FocusStatus.RUNNING.value,
                )
                .values(**values)
            )
        return self.get_session(session_id)

    def update_session_duration(
        self, session_id: str, actual_duration: int
    ) -> Optional[FocusSession]:
        """Record the focused seconds of a running session."""
        if actual_duration is None or actual_duration < 0:
            raise ValidationError(
                "Actual duration must be a non-negative number of seconds",
                field="actual_duration",
                value=actual_duration,
                code=ErrorCode.INVALID_FIELD,
            )
        return self._update_running(
            session_id, "update_focus_duration", actual_duration=int(actual_duration)
        )

    def _finish(self, session_id: str, status: FocusStatus) -> Optional[FocusSession]:
        current = self.get_session(session_id)
        if current is None or current.status != FocusStatus.RUNNING:
            return current

        now = utc_now()
        # Wall-clock elapsed time replaces whatever was tracked while running
        elapsed = math.floor((now - current.start_time).total_seconds())
        finished = self._update_running(
            session_id,
            f"{status.value}_focus_session",
            status=status.value,
            end_time=now,
            actual_duration=elapsed,
        )
        logger.debug(f"Focus session {session_id} {status.value} after {elapsed}s")
        return finished

    def complete_session(self, session_id: str) -> Optional[FocusSession]:
        """Mark a running session completed, timing it by wall clock.

        Returns:
            The session, or None if it does not exist.
        """
        return self._finish(session_id, FocusStatus.COMPLETED)

    def cancel_session(self, session_id: str) -> Optional[FocusSession]:
        """Like complete_session, but the session ends up cancelled."""
        return self._finish(session_id, FocusStatus.CANCELLED)

    def list_sessions(self, limit: int = DEFAULT_SESSION_LIMIT) -> List[FocusSession]:
        """Most recently created sessions first."""
        with self.session_factory() as session:
            db_sessions = session.scalars(
                select(DBFocusSession)
                .order_by(DBFocusSession.created_at.desc())
                .limit(limit)
            ).all()
            return [self._db_session_to_model(s) for s in db_sessions]

    def get_sessions_for_todo(self, todo_id: str) -> List[FocusSession]:
        with self.session_factory() as session:
            db_sessions = session.scalars(
                select(DBFocusSession)
                .where(DBFocusSession.todo_id == todo_id)
                .order_by(DBFocusSession.created_at.desc())
            ).all()
            return [self._db_session_to_model(s) for s in db_sessions]

    def get_stats(self) -> FocusStats:
        """Aggregate statistics over all sessions.

        Focus time only counts completed sessions. "Today" and "this week"
        are the local calendar day and the local week starting Sunday,
        matched on session start time.
        """
        now = utc_now()
        day_start = local_midnight(now)
        week_start = local_week_start(now)

        with self.session_factory() as session:
            total_sessions = session.scalar(
                select(func.count(DBFocusSession.id))
            ) or 0
            completed = session.execute(
                select(DBFocusSession.start_time, DBFocusSession.actual_duration)
                .where(DBFocusSession.status == FocusStatus.COMPLETED.value)
            ).all()

        total_focus_time = 0
        today_focus_time = 0
        week_focus_time = 0
        days = set()
        for start_time, actual_duration in completed:
            start_time = ensure_timezone_aware(start_time)
            seconds = actual_duration or 0
            total_focus_time += seconds
            if start_time >= day_start:
                today_focus_time += seconds
            if start_time >= week_start:
                week_focus_time += seconds
            days.add(local_date(start_time))

        completed_sessions = len(completed)
        current_streak, longest_streak = calculate_streaks(days, local_date(now))

        return FocusStats(
            total_sessions=total_sessions,
            completed_sessions=completed_sessions,
            total_focus_time=total_focus_time,
            average_session_length=(
                total_focus_time / completed_sessions if completed_sessions else 0.0
            ),
            current_streak=current_streak,
            longest_streak=longest_streak,
            today_focus_time=today_focus_time,
            this_week_focus_time=week_focus_time,
        )
