"""Pure decision logic: scoring, clustering, retest selection, phases, reports."""

from .clustering import ClusterGroup, cluster_students
from .phases import SessionStatus, next_phase, plan_advance, plan_toggle_pause, remaining_time_ms
from .report import GradedAnswer, ReportSummary, build_report
from .retest import RetestItem, calculate_retest_duration, select_retest_questions
from .scoring import (
    ConceptFrequency,
    GapAnalysis,
    StudentScore,
    analyze_gaps,
    build_concept_frequency_matrix,
    score_student,
)

__all__ = [
    "ClusterGroup",
    "cluster_students",
    "SessionStatus",
    "next_phase",
    "plan_advance",
    "plan_toggle_pause",
    "remaining_time_ms",
    "GradedAnswer",
    "ReportSummary",
    "build_report",
    "RetestItem",
    "calculate_retest_duration",
    "select_retest_questions",
    "ConceptFrequency",
    "GapAnalysis",
    "StudentScore",
    "analyze_gaps",
    "build_concept_frequency_matrix",
    "score_student",
]
