"""Student roster endpoints. Tutors manage the names students pick when joining."""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select

from ..db.base import get_db_session
from ..db.models import Student, Tutor
from .auth import get_current_tutor

router = APIRouter(prefix="/students", tags=["Roster"])


class StudentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class StudentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    student_in: StudentCreate,
    current_tutor: Tutor = Depends(get_current_tutor),
) -> StudentResponse:
    async with get_db_session() as db:
        student = Student(org_id=current_tutor.org_id, name=student_in.name.strip())
        db.add(student)
        await db.commit()
        await db.refresh(student)
    return StudentResponse.model_validate(student)


@router.get("", response_model=list[StudentResponse])
async def list_students(current_tutor: Tutor = Depends(get_current_tutor)) -> list[StudentResponse]:
    async with get_db_session() as db:
        result = await db.execute(
            select(Student).where(Student.org_id == current_tutor.org_id).order_by(Student.name)
        )
        students = result.scalars().all()
    return [StudentResponse.model_validate(student) for student in students]
