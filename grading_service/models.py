from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone

Base = declarative_base()


# Owned by the course authoring side; read-only here.
class Lesson(Base):
    __tablename__ = 'lessons'

    id = Column(Integer, primary_key=True)
    course_id = Column(Integer, nullable=False, index=True)
    title = Column(String(255), nullable=False, default='')


class ProgrammingExercise(Base):
    __tablename__ = 'programming_exercises'

    id = Column(Integer, primary_key=True)
    lesson_id = Column(Integer, ForeignKey('lessons.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False, default='')
    description = Column(Text, nullable=False, default='')

    starter_code = Column(JSON, nullable=False, default=dict)
    test_cases = Column(JSON, nullable=False, default=list)
    languages = Column(JSON, nullable=False, default=list)

    time_limit = Column(Float)
    memory_limit = Column(Integer)
    function_name = Column(String(100), nullable=False, default='solution')
    input_format = Column(String(20), nullable=False, default='json')
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    lesson = relationship(Lesson, lazy='joined')


class Enrollment(Base):
    __tablename__ = 'enrollments'

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, nullable=False, index=True)
    course_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default='enrolled')


class CodeSubmission(Base):
    __tablename__ = 'code_submissions'
    __table_args__ = (
        UniqueConstraint(
            'exercise_id', 'student_id', 'attempt_number',
            name='uq_code_submission_attempt'
        ),
    )

    id = Column(Integer, primary_key=True)
    exercise_id = Column(Integer, nullable=False, index=True)
    student_id = Column(Integer, nullable=False, index=True)
    lesson_id = Column(Integer, nullable=True)

    language = Column(String(20), nullable=False)
    code = Column(Text, nullable=False)
    test_results = Column(JSON, nullable=False, default=list)

    score = Column(Integer, nullable=False, default=0)
    passed = Column(Boolean, nullable=False, default=False)
    attempt_number = Column(Integer, nullable=False, default=1)
    execution_time = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
