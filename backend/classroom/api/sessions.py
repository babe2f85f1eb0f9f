"""Session API endpoints: tutor controls, student entry and public status polling."""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from ..content.gateway import ContentGenerator, get_content_generator
from ..core.security import create_student_token
from ..db.base import get_db_session
from ..db.models import Tutor
from ..engine.phases import as_utc
from ..services import analysis, lifecycle, retest, sessions
from ..services.tasks import run_background
from .auth import get_current_tutor
from .tests import QuestionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


# ==============================================================================
# Pydantic Models
# ==============================================================================

class SessionCreate(BaseModel):
    """Create a session; ranges are checked by the service."""
    test_id: int
    tutor_count: int = 1
    retest_question_count: Optional[int] = None
    test_duration_minutes: Optional[int] = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    test_id: int
    pin_code: str
    status: str
    tutor_count: int
    retest_question_count: int
    test_duration_minutes: int
    test_started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    total_paused_ms: int = 0
    created_at: Optional[datetime] = None
    test_name: Optional[str] = None


class RosterEntry(BaseModel):
    student_id: int
    name: str
    joined_at: Optional[datetime] = None
    test_submitted: bool = False
    test_submitted_at: Optional[datetime] = None


class AnswerCell(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    student_id: int
    question_id: int
    selected_answer: Optional[str] = None
    is_correct: Optional[bool] = None


class SessionDetailResponse(SessionResponse):
    total_questions: int = 0
    students: list[RosterEntry] = Field(default_factory=list)
    questions: list[QuestionResponse] = Field(default_factory=list)
    answers: list[AnswerCell] = Field(default_factory=list)


class TransitionResponse(BaseModel):
    status: str
    previous_status: str


class JoinRequest(BaseModel):
    pin: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")
    student_id: int


class JoinResponse(BaseModel):
    token: str
    student_id: int
    student_name: str
    session_id: int
    session_status: str


class FindStudent(BaseModel):
    id: int
    name: str


class FindResponse(BaseModel):
    session_id: int
    status: str
    students: list[FindStudent]


class StatusStudent(BaseModel):
    student_id: int
    name: str
    test_submitted: bool


class StatusResponse(BaseModel):
    """Public polling payload. Carries no answers."""
    session_id: int
    status: str
    test_started_at: Optional[datetime] = None
    test_duration_minutes: int
    paused_at: Optional[datetime] = None
    total_paused_ms: int
    remaining_ms: Optional[int] = None
    poll_interval_seconds: int
    students: list[StatusStudent]


class AnalysisStatusResponse(BaseModel):
    status: str
    progress: int
    error: Optional[str] = None


class ConceptFrequencyResponse(BaseModel):
    concept: str
    count: int
    student_ids: list[int]
    question_ids: list[int]


class StudentGapResponse(BaseModel):
    student_id: int
    weak_areas: list[str]
    strong_areas: list[str]
    score: int


class GapAnalysisResponse(BaseModel):
    top_concepts: list[ConceptFrequencyResponse]
    student_summaries: list[StudentGapResponse]


class GroupMember(BaseModel):
    student_id: int
    name: str


class GroupResponse(BaseModel):
    id: int
    group_type: str
    concept_focus: Optional[str] = None
    students: list[GroupMember]
    tutor_guide: Optional[str] = None
    practice_problems: list[dict[str, Any]] = Field(default_factory=list)


def _session_response(session, test_name: Optional[str] = None) -> SessionResponse:
    response = SessionResponse.model_validate(session)
    response.test_started_at = as_utc(session.test_started_at)
    response.paused_at = as_utc(session.paused_at)
    response.test_name = test_name
    return response


# ==============================================================================
# Student Entry (public)
# ==============================================================================

@router.get("/find", response_model=FindResponse)
async def find_session(pin: str = Query(..., description="6-digit session PIN")) -> FindResponse:
    """Find a joinable session by PIN and list the names students can pick."""
    async with get_db_session() as db:
        session, students = await sessions.find_session_by_pin(db, pin)

    return FindResponse(
        session_id=session.id,
        status=session.status,
        students=[FindStudent(id=student.id, name=student.name) for student in students],
    )


@router.post("/{session_id}/join", response_model=JoinResponse)
async def join_session(session_id: int, join_in: JoinRequest) -> JoinResponse:
    """Join a session as a roster student and receive a student token."""
    async with get_db_session() as db:
        session, student, _ = await sessions.join_session(db, session_id, join_in.pin, join_in.student_id)

    return JoinResponse(
        token=create_student_token(student.id, session.id),
        student_id=student.id,
        student_name=student.name,
        session_id=session.id,
        session_status=session.status,
    )


@router.get("/{session_id}/status", response_model=StatusResponse)
async def get_session_status(session_id: int) -> StatusResponse:
    """Phase, clock and roster. Students poll this without a tutor login."""
    async with get_db_session() as db:
        snapshot = await sessions.get_status_snapshot(db, session_id)
    return StatusResponse(**snapshot)


# ==============================================================================
# Tutor Session Management
# ==============================================================================

@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    session_in: SessionCreate,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> SessionResponse:
    """Create a session in the lobby."""
    async with get_db_session() as db:
        session = await sessions.create_session(
            db,
            current_tutor,
            session_in.test_id,
            session_in.tutor_count,
            session_in.retest_question_count,
            session_in.test_duration_minutes,
        )
    return _session_response(session)


@router.get("", response_model=list[SessionResponse])
async def list_sessions(current_tutor: Tutor = Depends(get_current_tutor)) -> list[SessionResponse]:
    """List the organization's sessions, newest first."""
    async with get_db_session() as db:
        rows = await sessions.list_sessions(db, current_tutor)
    return [_session_response(session, test_name) for session, test_name in rows]


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> SessionDetailResponse:
    """Session with roster; after the lobby also the answer grid."""
    async with get_db_session() as db:
        detail = await sessions.get_session_detail(db, session_id, current_tutor)

    base = _session_response(detail["session"], detail["test_name"])
    return SessionDetailResponse(
        **base.model_dump(),
        total_questions=detail["total_questions"],
        students=[
            RosterEntry(
                student_id=student.id,
                name=student.name,
                joined_at=as_utc(membership.joined_at),
                test_submitted=membership.test_submitted,
                test_submitted_at=as_utc(membership.test_submitted_at),
            )
            for membership, student in detail["students"]
        ],
        questions=[QuestionResponse.model_validate(question) for question in detail["questions"]],
        answers=[AnswerCell.model_validate(answer) for answer in detail["answers"]],
    )


@router.delete("/{session_id}")
async def delete_session(
    session_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> dict[str, bool]:
    """Delete a session and all of its data."""
    async with get_db_session() as db:
        await sessions.delete_session(db, session_id, current_tutor)
    return {"success": True}


@router.post("/{session_id}/advance", response_model=TransitionResponse)
async def advance_session(
    session_id: int,
    background_tasks: BackgroundTasks,
    current_tutor: Tutor = Depends(get_current_tutor),
    generator: ContentGenerator = Depends(get_content_generator),
) -> TransitionResponse:
    """Move the session to its next phase.

    Analysis and retest preparation start in the background; the response
    does not wait for them.
    """
    async with get_db_session() as db:
        transition = await lifecycle.advance_session(db, session_id, current_tutor)

    lifecycle.schedule_side_effects(background_tasks, session_id, transition, generator)
    return TransitionResponse(
        status=transition.to_status.value,
        previous_status=transition.from_status.value,
    )


@router.post("/{session_id}/pause", response_model=TransitionResponse)
async def toggle_pause(
    session_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> TransitionResponse:
    """Pause a running test, or resume a paused one."""
    async with get_db_session() as db:
        transition = await lifecycle.toggle_pause(db, session_id, current_tutor)

    return TransitionResponse(
        status=transition.to_status.value,
        previous_status=transition.from_status.value,
    )


# ==============================================================================
# Analysis, Groups and Retest Preparation
# ==============================================================================

@router.get("/{session_id}/analysis", response_model=AnalysisStatusResponse)
async def get_analysis_status(session_id: int) -> AnalysisStatusResponse:
    """Analysis job progress. Public so waiting students can poll it."""
    async with get_db_session() as db:
        job = await analysis.get_job_status(db, session_id)
    return AnalysisStatusResponse(**job)


@router.post("/{session_id}/analysis")
async def start_analysis(
    session_id: int,
    background_tasks: BackgroundTasks,
    current_tutor: Tutor = Depends(get_current_tutor),
    generator: ContentGenerator = Depends(get_content_generator),
) -> dict[str, str]:
    """(Re-)run the analysis pipeline; replaces any previous groups and job."""
    async with get_db_session() as db:
        await sessions.load_owned_session(db, session_id, current_tutor)
        await analysis.start_analysis(db, session_id)

    background_tasks.add_task(
        run_background, f"analysis[{session_id}]", analysis.run_analysis, session_id, generator
    )
    return {"status": "started"}


@router.get("/{session_id}/gaps", response_model=GapAnalysisResponse)
async def get_gap_analysis(
    session_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> GapAnalysisResponse:
    """Most-missed concepts and each student's weak areas."""
    async with get_db_session() as db:
        await sessions.load_owned_session(db, session_id, current_tutor)
        gaps = await analysis.compute_gap_analysis(db, session_id)

    return GapAnalysisResponse(
        top_concepts=[ConceptFrequencyResponse(**vars(item)) for item in gaps.top_concepts],
        student_summaries=[StudentGapResponse(**vars(item)) for item in gaps.student_summaries],
    )


@router.get("/{session_id}/groups", response_model=list[GroupResponse])
async def list_groups(
    session_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> list[GroupResponse]:
    """Lesson groups with members and lesson plans."""
    async with get_db_session() as db:
        await sessions.load_owned_session(db, session_id, current_tutor)
        groups = await analysis.list_groups(db, session_id)
    return [GroupResponse(**group) for group in groups]


@router.post("/{session_id}/prepare-retest")
async def prepare_retest(
    session_id: int,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> dict[str, Any]:
    """Assemble retests now for any student who does not have one yet."""
    async with get_db_session() as db:
        await sessions.load_owned_session(db, session_id, current_tutor)
        preparation = await retest.prepare_retests_in(db, session_id)

    return {
        "success": not preparation.failed,
        "assembled": {str(k): v for k, v in preparation.assembled.items()},
        "failed": preparation.failed,
    }
