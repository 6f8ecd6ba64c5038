from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Language(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"


class InputFormat(str, Enum):
    JSON = "json"
    SPACE_SEPARATED = "space_separated"
    LINE_SEPARATED = "line_separated"


class UserRole(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class TestCase(BaseModel):
    __test__ = False

    input: str
    expected_output: str
    is_hidden: bool = False
    points: int = Field(default=1, ge=1)
    description: Optional[str] = None


class Exercise(BaseModel):
    id: int
    course_id: int
    lesson_id: Optional[int] = None
    title: str = ""
    languages: List[Language]
    test_cases: List[TestCase]
    starter_code: Dict[str, str] = Field(default_factory=dict)
    time_limit: float = 5
    memory_limit: int = 128
    function_name: str = "solution"
    input_format: InputFormat = InputFormat.JSON

    class Config:
        from_attributes = True


class TestResult(BaseModel):
    __test__ = False

    passed: bool = False
    output: str = ""
    expected_output: str = ""
    error: str = ""
    execution_time: int = 0
    points_earned: int = 0


class StoredTestResult(TestResult):
    test_case_index: int


class SubmissionResponse(BaseModel):
    id: int
    exercise_id: int
    student_id: int
    lesson_id: Optional[int] = None
    language: Language
    code: str
    test_results: List[StoredTestResult]
    score: int
    passed: bool
    attempt_number: int
    execution_time: int
    created_at: datetime

    class Config:
        from_attributes = True


class GradeRequest(BaseModel):
    code: Optional[str] = None
    language: Optional[str] = None
    user_id: int
    user_role: UserRole


class GradeResult(BaseModel):
    test_results: List[TestResult]
    score: int
    passed: bool
    total_test_cases: int
    passed_test_cases: int
    submission: Optional[SubmissionResponse] = None
