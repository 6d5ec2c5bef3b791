"""Tests for focus sessions, statistics and the streak calculator."""
import datetime
from datetime import timedelta

import pytest

from flux_notes.exceptions import ValidationError
from flux_notes.models.db_models import DBFocusSession
from flux_notes.models.schema import FocusStatus, generate_id, utc_now
from flux_notes.storage import focus_repository as focus_module
from flux_notes.storage.focus_repository import calculate_streaks
from flux_notes.utils import local_midnight, local_week_start

TODAY = datetime.date(2024, 3, 10)


def _days_ago(*offsets):
    return [TODAY - timedelta(days=n) for n in offsets]


class TestCalculateStreaks:
    """The streak walk must reproduce these outputs exactly."""

    def test_gap_after_two_days_breaks_current(self):
        # A gap resets the running streak and drops the current one
        assert calculate_streaks(_days_ago(0, 1, 3), TODAY) == (0, 2)

    def test_only_today(self):
        assert calculate_streaks(_days_ago(0), TODAY) == (1, 1)

    def test_only_two_days_ago(self):
        assert calculate_streaks(_days_ago(2), TODAY) == (0, 1)

    def test_empty(self):
        assert calculate_streaks([], TODAY) == (0, 0)

    def test_yesterday_keeps_current_alive(self):
        assert calculate_streaks(_days_ago(1, 2, 3), TODAY) == (3, 3)

    def test_longest_in_the_past(self):
        assert calculate_streaks(_days_ago(5, 6, 7, 8), TODAY) == (0, 4)

    def test_duplicates_and_order_do_not_matter(self):
        assert calculate_streaks(_days_ago(1, 0, 1, 0), TODAY) == (2, 2)


def _insert_session(session_factory, start_time, actual_duration, status=FocusStatus.COMPLETED):
    with session_factory() as session:
        session.add(
            DBFocusSession(
                id=generate_id(),
                start_time=start_time,
                end_time=start_time + timedelta(seconds=actual_duration),
                duration=1500,
                actual_duration=actual_duration,
                status=status.value,
                created_at=start_time,
            )
        )
        session.commit()


class TestFocusRepository:
    """Tests for FocusRepository."""

    def test_start_session(self, focus_repository):
        session = focus_repository.start_session(1500)

        assert session.status == FocusStatus.RUNNING
        assert session.actual_duration == 0
        assert session.end_time is None
        assert focus_repository.get_running_session().id == session.id

    def test_negative_duration_rejected(self, focus_repository):
        with pytest.raises(ValidationError):
            focus_repository.start_session(-1)

    def test_session_for_todo(self, todo_repository, focus_repository):
        todo = todo_repository.create("Deep work")
        session = focus_repository.start_session(600, todo_id=todo.id)

        assert [s.id for s in focus_repository.get_sessions_for_todo(todo.id)] == [session.id]

    def test_deleting_todo_detaches_session(self, todo_repository, focus_repository):
        todo = todo_repository.create("Deep work")
        session = focus_repository.start_session(600, todo_id=todo.id)
        todo_repository.delete(todo.id)

        assert focus_repository.get_session(session.id).todo_id is None

    def test_update_duration(self, focus_repository):
        session = focus_repository.start_session(1500)
        updated = focus_repository.update_session_duration(session.id, 42)
        assert updated.actual_duration == 42

    def test_update_missing(self, focus_repository):
        assert focus_repository.update_session_duration("missing", 10) is None

    def test_complete_uses_wall_clock(self, focus_repository, monkeypatch):
        session = focus_repository.start_session(1500)
        focus_repository.update_session_duration(session.id, 5)
        finished_at = session.start_time + timedelta(seconds=90, milliseconds=700)
        monkeypatch.setattr(focus_module, "utc_now", lambda: finished_at)

        completed = focus_repository.complete_session(session.id)

        assert completed.status == FocusStatus.COMPLETED
        assert completed.actual_duration == 90
        assert completed.end_time == finished_at
        assert focus_repository.get_running_session() is None

    def test_cancel(self, focus_repository):
        session = focus_repository.start_session(1500)
        cancelled = focus_repository.cancel_session(session.id)
        assert cancelled.status == FocusStatus.CANCELLED
        assert cancelled.end_time is not None

    def test_finished_sessions_are_terminal(self, focus_repository):
        session = focus_repository.start_session(1500)
        completed = focus_repository.complete_session(session.id)

        assert focus_repository.cancel_session(session.id) == completed
        assert focus_repository.update_session_duration(session.id, 999) == completed

    def test_complete_missing(self, focus_repository):
        assert focus_repository.complete_session("missing") is None

    def test_list_sessions_newest_first_with_limit(self, focus_repository, session_factory):
        now = utc_now()
        for minutes in (30, 20, 10):
            _insert_session(session_factory, now - timedelta(minutes=minutes), 60)

        sessions = focus_repository.list_sessions(limit=2)

        assert len(sessions) == 2
        assert sessions[0].created_at > sessions[1].created_at


class TestFocusStats:
    def test_empty(self, focus_repository):
        stats = focus_repository.get_stats()
        assert stats.total_sessions == 0
        assert stats.average_session_length == 0
        assert (stats.current_streak, stats.longest_streak) == (0, 0)

    def test_totals_and_windows(self, focus_repository, session_factory):
        now = utc_now()
        today_start = local_midnight(now)
        week_start = local_week_start(now)

        _insert_session(session_factory, today_start + timedelta(seconds=1), 1200)
        _insert_session(session_factory, week_start - timedelta(days=8), 600)
        _insert_session(session_factory, today_start + timedelta(seconds=2), 300, FocusStatus.CANCELLED)
        focus_repository.start_session(1500)

        stats = focus_repository.get_stats()

        assert stats.total_sessions == 4
        assert stats.completed_sessions == 2
        assert stats.total_focus_time == 1800
        assert stats.average_session_length == 900
        assert stats.today_focus_time == 1200
        assert stats.this_week_focus_time == 1200
        assert stats.current_streak == 1

    def test_streaks_from_completed_sessions(self, focus_repository, session_factory):
        today_start = local_midnight(utc_now())
        # Noon local on today, yesterday and three days ago
        for days in (0, 1, 3):
            _insert_session(
                session_factory, today_start - timedelta(days=days) + timedelta(hours=12), 60
            )

        stats = focus_repository.get_stats()

        assert (stats.current_streak, stats.longest_streak) == (0, 2)
