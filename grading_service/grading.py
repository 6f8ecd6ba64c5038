# grading_service/grading.py

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from grading_service import crud
from grading_service.attempts import AttemptTracker
from grading_service.comparator import ComparisonPolicy, outputs_match
from grading_service.config import settings
from grading_service.errors import (
    ForbiddenError,
    MalformedInputError,
    NotFoundError,
    ValidationError,
)
from grading_service.input_adapter import parse_input
from grading_service.metrics import GRADING_REQUESTS, SUBMISSIONS_PERSISTED, TEST_CASE_OUTCOMES
from grading_service.sandbox import ExecutionOutcome, LanguageExecutor, build_executors
from grading_service.schemas import (
    Exercise,
    GradeResult,
    Language,
    StoredTestResult,
    SubmissionResponse,
    TestCase,
    TestResult,
    UserRole,
)
from grading_service.scoring import aggregate

logger = logging.getLogger("grading-service")


class TestCaseScope(str, Enum):
    __test__ = False

    VISIBLE_ONLY = "visible_only"
    ALL = "all"


def select_test_cases(exercise: Exercise, scope: TestCaseScope) -> List[TestCase]:
    if scope == TestCaseScope.VISIBLE_ONLY:
        return [tc for tc in exercise.test_cases if not tc.is_hidden]
    return list(exercise.test_cases)


def outcome_label(outcome: ExecutionOutcome, passed: bool) -> str:
    if outcome.timed_out:
        return "timeout"
    if outcome.output_too_large:
        return "output_too_large"
    if outcome.error:
        return "error"
    return "passed" if passed else "failed"


class GradingService:
    """
    The run/submit pipeline: validate, authorize, grade each selected test case
    in the sandbox, aggregate and, for submit, persist the attempt.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        executors: Optional[Dict[Language, LanguageExecutor]] = None,
        policy: Optional[ComparisonPolicy] = None,
        attempt_tracker: Optional[AttemptTracker] = None,
        max_parallel_executions: int = 1,
    ):
        self.session_factory = session_factory
        self.executors = executors if executors is not None else build_executors(settings)
        self.policy = policy or ComparisonPolicy.from_settings(settings)
        self.attempt_tracker = attempt_tracker or AttemptTracker()
        self.max_parallel_executions = max(1, max_parallel_executions)

    async def run_code(self, exercise_id: int, code: str, language: str, user_id: int, user_role: str) -> GradeResult:
        return await self._grade(
            exercise_id, code, language, user_id, user_role,
            scope=TestCaseScope.VISIBLE_ONLY, persist=False,
        )

    async def submit_code(self, exercise_id: int, code: str, language: str, user_id: int, user_role: str) -> GradeResult:
        return await self._grade(
            exercise_id, code, language, user_id, user_role,
            scope=TestCaseScope.ALL, persist=True,
        )

    def get_submissions(self, exercise_id: int, student_id: int, limit: Optional[int] = None) -> List[SubmissionResponse]:
        limit = limit or settings.submission_history_limit
        db = self.session_factory()
        try:
            rows = crud.get_student_submissions(db, exercise_id, student_id, limit)
            return [SubmissionResponse.model_validate(row) for row in rows]
        finally:
            db.close()

    def get_submission(self, submission_id: int) -> SubmissionResponse:
        db = self.session_factory()
        try:
            row = crud.get_submission_by_id(db, submission_id)
            if not row:
                raise NotFoundError("Submission not found")
            return SubmissionResponse.model_validate(row)
        finally:
            db.close()

    async def _grade(
        self,
        exercise_id: int,
        code: str,
        language: str,
        user_id: int,
        user_role: str,
        scope: TestCaseScope,
        persist: bool,
    ) -> GradeResult:
        operation = "submit" if persist else "run"

        if not code or not code.strip() or not language:
            raise ValidationError("Code and language are required")
        try:
            lang = Language(language)
        except ValueError:
            raise ValidationError(f"Language {language} is not supported")
        try:
            role = UserRole(user_role)
        except ValueError:
            raise ValidationError(f"Unknown user role: {user_role}")

        db = self.session_factory()
        try:
            exercise = crud.get_exercise(db, exercise_id)
            if not exercise:
                raise NotFoundError("Exercise not found")

            if lang not in exercise.languages:
                raise ValidationError(f"Language {lang.value} is not supported for this exercise")

            if role == UserRole.STUDENT and not crud.is_enrolled(db, user_id, exercise.course_id):
                action = "submit" if persist else "attempt"
                raise ForbiddenError(f"You must be enrolled in this course to {action} exercises")
        finally:
            db.close()

        test_cases = select_test_cases(exercise, scope)
        if not test_cases:
            if scope == TestCaseScope.VISIBLE_ONLY:
                raise ValidationError("No visible test cases available")
            raise ValidationError("Exercise has no test cases")

        GRADING_REQUESTS.labels(operation=operation, language=lang.value).inc()
        logger.info(
            f"Grading {operation} for user {user_id} on exercise {exercise_id}: "
            f"{len(test_cases)} test case(s), language={lang.value}"
        )

        results = await self.grade_test_cases(exercise, code, lang, test_cases)
        summary = aggregate(results, test_cases)

        logger.info(
            f"Graded {operation} for user {user_id} on exercise {exercise_id}: "
            f"{summary.passed_count}/{len(test_cases)} passed, score {summary.score}"
        )

        submission = None
        if persist:
            submission = await self._persist(exercise, user_id, lang, code, results, summary.score, summary.passed)

        return GradeResult(
            test_results=results,
            score=summary.score,
            passed=summary.passed,
            total_test_cases=len(test_cases),
            passed_test_cases=summary.passed_count,
            submission=submission,
        )

    async def grade_test_cases(
        self,
        exercise: Exercise,
        code: str,
        language: Language,
        test_cases: List[TestCase],
    ) -> List[TestResult]:
        """Results always come back in test case order."""
        if self.max_parallel_executions == 1:
            return [
                await self.grade_test_case(exercise, code, language, i, tc)
                for i, tc in enumerate(test_cases)
            ]

        semaphore = asyncio.Semaphore(self.max_parallel_executions)

        async def bounded(index: int, test_case: TestCase) -> TestResult:
            async with semaphore:
                return await self.grade_test_case(exercise, code, language, index, test_case)

        return list(await asyncio.gather(*(bounded(i, tc) for i, tc in enumerate(test_cases))))

    async def grade_test_case(
        self,
        exercise: Exercise,
        code: str,
        language: Language,
        index: int,
        test_case: TestCase,
    ) -> TestResult:
        expected = (test_case.expected_output or "").strip()

        try:
            args = parse_input(test_case.input, exercise.input_format)
        except MalformedInputError as e:
            logger.warning(f"Exercise {exercise.id} test {index + 1}: {e}")
            TEST_CASE_OUTCOMES.labels(language=language.value, outcome="malformed_input").inc()
            return TestResult(passed=False, expected_output=expected, error=str(e))

        outcome = await self.executors[language].execute(
            code, args, exercise.function_name, exercise.time_limit, exercise.memory_limit
        )

        passed = not outcome.error and outputs_match(outcome.return_value, expected, self.policy)
        label = outcome_label(outcome, passed)
        TEST_CASE_OUTCOMES.labels(language=language.value, outcome=label).inc()
        logger.info(f"Exercise {exercise.id} test {index + 1}: {label} in {outcome.execution_time_ms}ms")

        return TestResult(
            passed=passed,
            output=(outcome.return_value or "").strip(),
            expected_output=expected,
            error=outcome.error,
            execution_time=outcome.execution_time_ms,
            points_earned=test_case.points if passed else 0,
        )

    async def _persist(
        self,
        exercise: Exercise,
        student_id: int,
        language: Language,
        code: str,
        results: List[TestResult],
        score: int,
        passed: bool,
    ) -> SubmissionResponse:
        stored = [
            StoredTestResult(test_case_index=i, **result.model_dump())
            for i, result in enumerate(results)
        ]
        execution_time = sum(r.execution_time for r in results)

        def write(attempt_number: int):
            return crud.create_submission(
                db=db,
                exercise=exercise,
                student_id=student_id,
                language=language,
                code=code,
                test_results=stored,
                score=score,
                passed=passed,
                attempt_number=attempt_number,
                execution_time=execution_time,
            )

        db: Session = self.session_factory()
        try:
            row = await self.attempt_tracker.persist(db, exercise.id, student_id, write)
            SUBMISSIONS_PERSISTED.labels(language=language.value, passed=str(passed).lower()).inc()
            return SubmissionResponse.model_validate(row)
        finally:
            db.close()
