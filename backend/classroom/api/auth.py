"""Authentication API endpoints for tutors, plus the student session token dependency."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select

from ..core.security import (
    create_tutor_token,
    get_password_hash,
    verify_access_token,
    verify_password,
)
from ..db.base import get_db_session
from ..db.models import Organization, Tutor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

# OAuth2 scheme for JWT bearer tokens
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/tutor/login")


# ==============================================================================
# Pydantic Models
# ==============================================================================

class TutorRegister(BaseModel):
    """Tutor registration schema. Registration also creates the organization."""
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str
    organization_name: str | None = None


class TutorLogin(BaseModel):
    """Tutor login schema."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    user_type: str
    user_id: int


class TutorResponse(BaseModel):
    """Tutor information response."""
    id: int
    email: str
    full_name: str
    org_id: int


@dataclass(frozen=True)
class StudentIdentity:
    """Who a student token speaks for: one student in one session."""
    student_id: int
    session_id: int


# ==============================================================================
# Authentication Dependencies
# ==============================================================================

def _credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_tutor(token: str = Depends(oauth2_scheme)) -> Tutor:
    """Get the current authenticated tutor from JWT token."""
    payload = verify_access_token(token)
    if not payload or payload.get("user_type") != "tutor":
        raise _credentials_error("Invalid authentication credentials")

    tutor_id = payload.get("tutor_id")
    if not tutor_id:
        raise _credentials_error("Invalid token payload")

    async with get_db_session() as session:
        tutor = await session.get(Tutor, tutor_id)

    if not tutor:
        raise _credentials_error("Tutor not found")
    return tutor


async def get_current_student(token: str = Depends(oauth2_scheme)) -> StudentIdentity:
    """Get the student and session a student token was issued for."""
    payload = verify_access_token(token)
    if not payload or payload.get("user_type") != "student":
        raise _credentials_error("Invalid authentication credentials")

    student_id = payload.get("student_id")
    session_id = payload.get("session_id")
    if not student_id or not session_id:
        raise _credentials_error("Invalid token payload")

    return StudentIdentity(student_id=int(student_id), session_id=int(session_id))


# ==============================================================================
# Helper Functions
# ==============================================================================

async def authenticate_tutor(email: str, password: str) -> Optional[Tutor]:
    """Authenticate a tutor by email and password."""
    async with get_db_session() as session:
        result = await session.execute(select(Tutor).where(Tutor.email == email))
        tutor = result.scalar_one_or_none()

    if tutor and verify_password(password, tutor.password_hash):
        return tutor
    return None


# ==============================================================================
# Tutor Authentication Endpoints
# ==============================================================================

@router.post("/tutor/register", status_code=status.HTTP_201_CREATED)
async def register_tutor(user_in: TutorRegister) -> TokenResponse:
    """Register a new tutor and their organization."""
    async with get_db_session() as session:
        # Check if email already exists
        existing = await session.execute(select(Tutor).where(Tutor.email == user_in.email))
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        organization = Organization(name=user_in.organization_name or f"{user_in.full_name}'s organization")
        session.add(organization)
        await session.flush()

        tutor = Tutor(
            org_id=organization.id,
            email=user_in.email,
            password_hash=get_password_hash(user_in.password),
            full_name=user_in.full_name,
        )
        session.add(tutor)
        await session.commit()
        await session.refresh(tutor)

    logger.info(f"New tutor registered: {tutor.email}")

    return TokenResponse(
        access_token=create_tutor_token(tutor.id, tutor.org_id),
        user_type="tutor",
        user_id=tutor.id,
    )


@router.post("/tutor/login")
async def login_tutor(user_in: TutorLogin) -> TokenResponse:
    """Authenticate a tutor."""
    tutor = await authenticate_tutor(user_in.email, user_in.password)

    if not tutor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )

    logger.info(f"Tutor logged in: {tutor.email}")

    return TokenResponse(
        access_token=create_tutor_token(tutor.id, tutor.org_id),
        user_type="tutor",
        user_id=tutor.id,
    )


@router.get("/tutor/me", response_model=TutorResponse)
async def get_tutor_me(current_tutor: Tutor = Depends(get_current_tutor)) -> TutorResponse:
    """Get current tutor information."""
    return TutorResponse(
        id=current_tutor.id,
        email=current_tutor.email,
        full_name=current_tutor.full_name,
        org_id=current_tutor.org_id,
    )
