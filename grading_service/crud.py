from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from grading_service.config import settings
from grading_service.models import CodeSubmission, Enrollment, ProgrammingExercise
from grading_service.schemas import Exercise, Language, StoredTestResult

ACTIVE_ENROLLMENT_STATUSES = ("enrolled", "completed")


def get_exercise(db: Session, exercise_id: int) -> Optional[Exercise]:
    row = db.query(ProgrammingExercise).filter(
        ProgrammingExercise.id == exercise_id,
        ProgrammingExercise.is_active.is_(True)
    ).first()

    if not row:
        return None

    return Exercise(
        id=row.id,
        course_id=row.lesson.course_id,
        lesson_id=row.lesson_id,
        title=row.title,
        languages=row.languages or [],
        test_cases=row.test_cases or [],
        starter_code=row.starter_code or {},
        time_limit=row.time_limit or settings.default_time_limit,
        memory_limit=row.memory_limit or settings.default_memory_limit_mb,
        function_name=row.function_name or "solution",
        input_format=row.input_format or "json",
    )


def is_enrolled(db: Session, student_id: int, course_id: int) -> bool:
    return db.query(Enrollment.id).filter(
        Enrollment.student_id == student_id,
        Enrollment.course_id == course_id,
        Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES)
    ).first() is not None


def get_max_attempt_number(db: Session, exercise_id: int, student_id: int) -> int:
    current = db.query(func.max(CodeSubmission.attempt_number)).filter(
        CodeSubmission.exercise_id == exercise_id,
        CodeSubmission.student_id == student_id
    ).scalar()
    return current or 0


def create_submission(
    db: Session,
    exercise: Exercise,
    student_id: int,
    language: Language,
    code: str,
    test_results: List[StoredTestResult],
    score: int,
    passed: bool,
    attempt_number: int,
    execution_time: int
) -> CodeSubmission:
    """Adds and flushes the row; committing is left to the caller."""
    submission = CodeSubmission(
        exercise_id=exercise.id,
        student_id=student_id,
        lesson_id=exercise.lesson_id,
        language=Language(language).value,
        code=code,
        test_results=[r.model_dump() for r in test_results],
        score=score,
        passed=passed,
        attempt_number=attempt_number,
        execution_time=execution_time,
        created_at=datetime.now(timezone.utc)
    )

    db.add(submission)
    db.flush()

    return submission


def get_submission_by_id(db: Session, submission_id: int) -> Optional[CodeSubmission]:
    return db.query(CodeSubmission).filter(CodeSubmission.id == submission_id).first()


def get_student_submissions(db: Session, exercise_id: int, student_id: int, limit: int = 10):
    query = db.query(CodeSubmission).filter(
        CodeSubmission.exercise_id == exercise_id,
        CodeSubmission.student_id == student_id
    ).order_by(
        CodeSubmission.attempt_number.desc()
    )

    if limit:
        query = query.limit(limit)

    return query.all()
