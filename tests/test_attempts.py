"""
Tests for attempt numbering and conflict handling when saving submissions.
"""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from grading_service.attempts import AttemptTracker, next_attempt_number
from grading_service.errors import PersistenceError
from grading_service.models import CodeSubmission


def _writer(db, exercise_id=1, student_id=42):
    def write(attempt_number):
        row = CodeSubmission(
            exercise_id=exercise_id,
            student_id=student_id,
            language="python",
            code="def solution(): pass",
            test_results=[],
            attempt_number=attempt_number,
        )
        db.add(row)
        db.flush()
        return row
    return write


def _attempts(session_factory):
    db = session_factory()
    try:
        return sorted(row.attempt_number for row in db.query(CodeSubmission).all())
    finally:
        db.close()


class TestNextAttemptNumber:

    def test_first_attempt_is_one(self, session_factory):
        db = session_factory()
        try:
            assert next_attempt_number(db, 1, 42) == 1
        finally:
            db.close()

    def test_follows_highest_existing(self, session_factory):
        db = session_factory()
        try:
            write = _writer(db)
            write(1)
            write(4)
            _writer(db, student_id=99)(9)
            db.commit()
            assert next_attempt_number(db, 1, 42) == 5
        finally:
            db.close()


class TestAttemptTracker:

    def test_sequential_persists(self, session_factory):
        tracker = AttemptTracker()
        db = session_factory()
        try:
            for _ in range(3):
                asyncio.run(tracker.persist(db, 1, 42, _writer(db)))
        finally:
            db.close()
        assert _attempts(session_factory) == [1, 2, 3]

    @patch("grading_service.attempts.next_attempt_number")
    def test_conflict_is_retried_with_fresh_number(self, mock_next, session_factory):
        tracker = AttemptTracker()
        db = session_factory()
        try:
            mock_next.return_value = 1
            asyncio.run(tracker.persist(db, 1, 42, _writer(db)))

            # Another writer took number 1 behind our back: stale read, then a fresh one.
            mock_next.side_effect = [1, 2]
            row = asyncio.run(tracker.persist(db, 1, 42, _writer(db)))
            assert row.attempt_number == 2
        finally:
            db.close()
        assert _attempts(session_factory) == [1, 2]

    @patch("grading_service.attempts.next_attempt_number", return_value=1)
    def test_second_conflict_is_fatal(self, mock_next, session_factory):
        tracker = AttemptTracker()
        db = session_factory()
        try:
            asyncio.run(tracker.persist(db, 1, 42, _writer(db)))
            with pytest.raises(PersistenceError, match="conflict"):
                asyncio.run(tracker.persist(db, 1, 42, _writer(db)))
        finally:
            db.close()
        assert _attempts(session_factory) == [1]

    def test_database_failure_leaves_nothing_behind(self, session_factory):
        tracker = AttemptTracker()
        db = session_factory()

        def broken_write(attempt_number):
            _writer(db)(attempt_number)
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        try:
            with pytest.raises(PersistenceError):
                asyncio.run(tracker.persist(db, 1, 42, broken_write))
        finally:
            db.close()
        assert _attempts(session_factory) == []


class TestLockBookkeeping:
    """Per-student locks only live while someone is holding or waiting on them."""

    def test_released_after_each_write(self, session_factory):
        tracker = AttemptTracker()
        db = session_factory()
        try:
            asyncio.run(tracker.persist(db, 1, 42, _writer(db)))
            asyncio.run(tracker.persist(db, 2, 42, _writer(db, exercise_id=2)))
        finally:
            db.close()
        assert tracker._locks == {}
        assert tracker._users == {}

    def test_concurrent_writers_share_a_lock(self, session_factory):
        tracker = AttemptTracker()
        db = session_factory()

        async def both():
            return await asyncio.gather(
                tracker.persist(db, 1, 42, _writer(db)),
                tracker.persist(db, 1, 42, _writer(db)),
            )

        try:
            rows = asyncio.run(both())
            assert sorted(row.attempt_number for row in rows) == [1, 2]
        finally:
            db.close()
        assert tracker._locks == {}

    @patch("grading_service.attempts.next_attempt_number", return_value=1)
    def test_released_after_failure(self, mock_next, session_factory):
        tracker = AttemptTracker()
        db = session_factory()
        try:
            asyncio.run(tracker.persist(db, 1, 42, _writer(db)))
            with pytest.raises(PersistenceError):
                asyncio.run(tracker.persist(db, 1, 42, _writer(db)))
        finally:
            db.close()
        assert tracker._locks == {}
