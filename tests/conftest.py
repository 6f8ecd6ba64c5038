import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from grading_service.comparator import ComparisonPolicy
from grading_service.database import Database
from grading_service.grading import GradingService
from grading_service.models import Enrollment, Lesson, ProgrammingExercise
from grading_service.sandbox import ExecutionOutcome, PythonExecutor
from grading_service.schemas import Language

COURSE_ID = 7
STUDENT_ID = 42

SUM_SOLUTION = "def solution(a, b):\n    return a + b\n"


class FakeExecutor:
    """Stands in for a LanguageExecutor; `behaviour(args)` returns a value or an outcome."""

    def __init__(self, behaviour):
        self.behaviour = behaviour
        self.calls = []

    async def execute(self, code, args, function_name, time_limit, memory_limit_mb=128):
        self.calls.append(list(args))
        value = self.behaviour(args)
        if isinstance(value, ExecutionOutcome):
            return value
        return ExecutionOutcome(
            return_value=value, stdout="", stderr="", timed_out=False,
            execution_time_ms=3, exit_code=0,
        )


def sum_behaviour(args):
    return str(sum(args))


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.init()
    yield db
    db.dispose()


@pytest.fixture
def session_factory(database):
    return database.get_session_local()


@pytest.fixture
def add_exercise(session_factory):
    def _add(test_cases, languages=("python", "javascript"), course_id=COURSE_ID, **fields):
        db = session_factory()
        try:
            lesson = Lesson(course_id=course_id, title="Loops")
            db.add(lesson)
            db.flush()
            exercise = ProgrammingExercise(
                lesson_id=lesson.id,
                title="Add two numbers",
                test_cases=list(test_cases),
                languages=list(languages),
                **fields,
            )
            db.add(exercise)
            db.commit()
            return exercise.id
        finally:
            db.close()

    return _add


@pytest.fixture
def enroll(session_factory):
    def _enroll(student_id=STUDENT_ID, course_id=COURSE_ID, status="enrolled"):
        db = session_factory()
        try:
            db.add(Enrollment(student_id=student_id, course_id=course_id, status=status))
            db.commit()
        finally:
            db.close()

    return _enroll


@pytest.fixture
def sum_test_cases():
    return [
        {"input": "[2, 3]", "expected_output": "5"},
        {"input": "[10, 10]", "expected_output": "20"},
        {"input": "[-4, 4]", "expected_output": "0", "is_hidden": True, "points": 2},
    ]


@pytest.fixture
def fake_executor():
    return FakeExecutor(sum_behaviour)


@pytest.fixture
def service(session_factory, fake_executor):
    return GradingService(
        session_factory=session_factory,
        executors={Language.PYTHON: fake_executor, Language.JAVASCRIPT: fake_executor},
        policy=ComparisonPolicy(),
    )


@pytest.fixture
def sandboxed_service(session_factory):
    return GradingService(
        session_factory=session_factory,
        executors={Language.PYTHON: PythonExecutor(sys.executable, max_output_bytes=64 * 1024)},
        policy=ComparisonPolicy(),
    )
