import asyncio
import logging
from typing import Callable, Dict, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from grading_service import crud
from grading_service.errors import PersistenceError
from grading_service.models import CodeSubmission

logger = logging.getLogger("attempt-tracker")


def next_attempt_number(db: Session, exercise_id: int, student_id: int) -> int:
    return crud.get_max_attempt_number(db, exercise_id, student_id) + 1


class AttemptTracker:
    """
    Assigns attempt numbers and writes submissions, one writer at a time per
    (exercise, student). The unique constraint on the attempt number catches
    writers in other processes; a conflict is retried once with a fresh number.
    """

    MAX_WRITES = 2

    def __init__(self):
        self._locks: Dict[Tuple[int, int], asyncio.Lock] = {}
        # Callers holding or waiting on each lock; the entry goes when it drops to zero.
        self._users: Dict[Tuple[int, int], int] = {}

    async def persist(
        self,
        db: Session,
        exercise_id: int,
        student_id: int,
        write: Callable[[int], CodeSubmission],
    ) -> CodeSubmission:
        """`write` receives the attempt number and adds the row to `db`."""
        key = (exercise_id, student_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                return self._write(db, exercise_id, student_id, write)
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def _write(
        self,
        db: Session,
        exercise_id: int,
        student_id: int,
        write: Callable[[int], CodeSubmission],
    ) -> CodeSubmission:
        for write_number in range(1, self.MAX_WRITES + 1):
            attempt_number = None
            try:
                attempt_number = next_attempt_number(db, exercise_id, student_id)
                submission = write(attempt_number)
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.warning(
                    f"Attempt {attempt_number} for exercise {exercise_id} / student {student_id} "
                    f"already taken (write {write_number}/{self.MAX_WRITES})"
                )
                if write_number == self.MAX_WRITES:
                    raise PersistenceError("Could not save submission: attempt number conflict") from e
                continue
            except SQLAlchemyError as e:
                db.rollback()
                logger.exception("Failed to save submission")
                raise PersistenceError(f"Could not save submission: {e.__class__.__name__}") from e

            db.refresh(submission)
            logger.info(
                f"Saved attempt {attempt_number} for exercise {exercise_id} / student {student_id}"
            )
            return submission
