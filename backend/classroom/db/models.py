"""Database models for tutoring sessions.

This module defines SQLAlchemy ORM models for:
- Organizations, Tutors and Students
- Tests and Questions
- Sessions and the students who joined them
- Main-test and retest answers, assembled retest questions
- Lesson groups, lesson plans and analysis jobs
- Progress reports
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


SESSION_STATUSES = ("lobby", "testing", "paused", "analyzing", "lesson", "retest", "complete")
ANALYSIS_STATUSES = (
    "pending",
    "grading",
    "analyzing",
    "clustering",
    "generating_lessons",
    "generating_practice",
    "complete",
    "error",
)
GROUP_TYPES = ("tutor_1", "tutor_2", "tutor_3", "independent")
SECTIONS = ("reading_writing", "math")
ANSWER_CHOICES = ("A", "B", "C", "D")


class Organization(Base):
    """Tutoring organization that owns tutors, students and tests."""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Tutor(Base):
    """Tutor user model."""
    __tablename__ = "tutors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Student(Base):
    """Roster entry; students pick their name when joining by PIN."""
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PracticeTest(Base):
    """Uploaded practice test."""
    __tablename__ = "tests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("tutors.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=False)
    status = Column(Enum("processing", "ready", "error", name="test_status"), default="ready", nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    questions = relationship(
        "Question",
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="Question.question_number",
    )


class Question(Base):
    """Multiple choice question belonging to a test."""
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    question_number = Column(Integer, nullable=False)
    question_text = Column(Text, nullable=True)
    answer_a = Column(Text, nullable=True)
    answer_b = Column(Text, nullable=True)
    answer_c = Column(Text, nullable=True)
    answer_d = Column(Text, nullable=True)
    correct_answer = Column(Enum(*ANSWER_CHOICES, name="answer_choice"), nullable=False)
    section = Column(Enum(*SECTIONS, name="question_section"), nullable=False)
    concept_tag = Column(String(255), nullable=True, index=True)
    ai_confidence = Column(Float, nullable=True)
    has_graphic = Column(Boolean, default=False, nullable=False)
    answers_are_visual = Column(Boolean, default=False, nullable=False)
    counterpart_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    test = relationship("PracticeTest", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("test_id", "question_number", name="unique_question_number"),
    )


class Session(Base):
    """A timed testing session run by a tutor for a group of students."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("tutors.id", ondelete="CASCADE"), nullable=False, index=True)
    pin_code = Column(String(6), nullable=False)
    status = Column(Enum(*SESSION_STATUSES, name="session_status"), default="lobby", nullable=False)
    tutor_count = Column(Integer, nullable=False, default=1)
    retest_question_count = Column(Integer, nullable=False, default=20)
    test_duration_minutes = Column(Integer, nullable=False, default=180)
    test_started_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    total_paused_ms = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_session_pin_status", "pin_code", "status"),
    )


class SessionStudent(Base):
    """A student who joined a session."""
    __tablename__ = "session_students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow)
    test_submitted = Column(Boolean, default=False, nullable=False)
    test_submitted_at = Column(DateTime(timezone=True), nullable=True)

    student = relationship("Student")

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="unique_session_student"),
    )


class StudentAnswer(Base):
    """Answer to a main-test question. ``is_correct`` is null until graded."""
    __tablename__ = "student_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    selected_answer = Column(String(1), nullable=True)
    is_correct = Column(Boolean, nullable=True)
    answered_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", "question_id", name="unique_student_answer"),
    )


class RetestQuestion(Base):
    """Question assembled into a student's retest."""
    __tablename__ = "retest_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    source = Column(Enum("missed", "padding", name="retest_source"), nullable=False)
    question_order = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    question = relationship("Question")

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", "question_id", name="unique_retest_question"),
        UniqueConstraint("session_id", "student_id", "question_order", name="unique_retest_order"),
    )


class RetestAnswer(Base):
    """Answer to a retest question."""
    __tablename__ = "retest_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    selected_answer = Column(String(1), nullable=True)
    is_correct = Column(Boolean, nullable=True)
    answered_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", "question_id", name="unique_retest_answer"),
    )


class LessonGroup(Base):
    """Cluster of students produced by analysis."""
    __tablename__ = "lesson_groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    group_type = Column(Enum(*GROUP_TYPES, name="group_type"), nullable=False)
    concept_focus = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    members = relationship("LessonGroupStudent", back_populates="group", cascade="all, delete-orphan")
    plan = relationship("LessonPlan", back_populates="group", uselist=False, cascade="all, delete-orphan")


class LessonGroupStudent(Base):
    """Group membership."""
    __tablename__ = "lesson_group_students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("lesson_groups.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)

    group = relationship("LessonGroup", back_populates="members")
    student = relationship("Student")

    __table_args__ = (
        UniqueConstraint("group_id", "student_id", name="unique_group_member"),
    )


class LessonPlan(Base):
    """Tutor guide for tutor groups, practice problems for the independent group."""
    __tablename__ = "lesson_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("lesson_groups.id", ondelete="CASCADE"), nullable=False, unique=True)
    tutor_guide = Column(Text, nullable=True)
    practice_problems = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    group = relationship("LessonGroup", back_populates="plan")


class AnalysisJob(Base):
    """Progress record of the analysis pipeline, one per session."""
    __tablename__ = "analysis_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, unique=True)
    status = Column(Enum(*ANALYSIS_STATUSES, name="analysis_status"), default="pending", nullable=False)
    progress = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ProgressReport(Base):
    """Per-student improvement summary, generated once."""
    __tablename__ = "progress_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    summary = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="unique_progress_report"),
    )
