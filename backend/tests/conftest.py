"""
Pytest configuration and fixtures for unit and API tests.
"""

import os
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, Sequence

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-classroom-sessions-0123456789"
os.environ["LLM_API_KEY"] = "test-key"
os.environ["DEBUG"] = "true"

import pytest
from httpx import ASGITransport, AsyncClient

from classroom.content.gateway import get_content_generator
from classroom.db.base import close_database, init_database
from classroom.main import app

API = "/api/v1"


class FakeContentGenerator:
    """Canned content; records every call."""

    def __init__(self):
        self.guide_calls: list[dict[str, Any]] = []
        self.practice_calls: list[dict[str, Any]] = []
        self.counterpart_calls: list[int] = []
        self.fail_with: Optional[Exception] = None
        # Awaited once by the next guide request, while the pipeline is mid-run
        self.on_guide: Optional[Callable[[], Awaitable[None]]] = None

    async def generate_tutor_guide(self, concept, missed_questions, student_names) -> str:
        if self.on_guide:
            hook, self.on_guide = self.on_guide, None
            await hook()
        if self.fail_with:
            raise self.fail_with
        self.guide_calls.append({
            "concept": concept,
            "questions": [question.id for question in missed_questions],
            "students": list(student_names),
        })
        return f"Guide for {concept}"

    async def generate_practice_problems(self, concept, section, sample_question_text, count):
        if self.fail_with:
            raise self.fail_with
        self.practice_calls.append({"concept": concept, "section": section, "count": count})
        return [
            {
                "id": f"practice-{concept}-{i}",
                "question_text": f"{concept} practice {i}",
                "answer_a": "1",
                "answer_b": "2",
                "answer_c": "3",
                "answer_d": "4",
                "correct_answer": "A",
                "explanation": "",
                "difficulty": i + 1,
                "concept_tag": concept,
                "has_graphic": False,
            }
            for i in range(count)
        ]

    async def generate_counterpart(self, question) -> dict[str, Any]:
        self.counterpart_calls.append(question.id)
        return {
            "question_text": f"Counterpart of {question.question_text}",
            "answer_a": "w",
            "answer_b": "x",
            "answer_c": "y",
            "answer_d": "z",
            "correct_answer": "B",
        }


def make_questions(concepts: Sequence[str], section: str = "math", correct: str = "A") -> list[dict[str, Any]]:
    """One extracted question per entry in ``concepts``."""
    return [
        {
            "question_text": f"Question {i + 1} on {concept}",
            "answer_a": "a",
            "answer_b": "b",
            "answer_c": "c",
            "answer_d": "d",
            "correct_answer": correct,
            "section": section,
            "concept_tag": concept,
            "ai_confidence": 0.9,
        }
        for i, concept in enumerate(concepts)
    ]


@pytest.fixture(autouse=True)
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory database per test."""
    await init_database()
    yield
    await close_database()


@pytest.fixture
def content_generator() -> FakeContentGenerator:
    fake = FakeContentGenerator()
    app.dependency_overrides[get_content_generator] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_content_generator, None)


@pytest.fixture
async def async_client(content_generator) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client


@pytest.fixture
async def tutor_headers(async_client: AsyncClient) -> dict:
    """Register a tutor and return headers with the tutor token."""
    response = await async_client.post(
        f"{API}/auth/tutor/register",
        json={
            "email": "tutor@example.com",
            "password": "testpass123",
            "full_name": "Test Tutor",
        }
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


async def create_test(client: AsyncClient, headers: dict, questions: list[dict[str, Any]], name: str = "Practice Test 1") -> dict:
    response = await client.post(f"{API}/tests", json={"name": name, "questions": questions}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def create_students(client: AsyncClient, headers: dict, names: Sequence[str]) -> list[dict]:
    students = []
    for name in names:
        response = await client.post(f"{API}/students", json={"name": name}, headers=headers)
        assert response.status_code == 201, response.text
        students.append(response.json())
    return students


async def create_session(client: AsyncClient, headers: dict, test_id: int, **options: Any) -> dict:
    response = await client.post(f"{API}/sessions", json={"test_id": test_id, **options}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def join(client: AsyncClient, session: dict, student_id: int) -> dict:
    """Join a session and return headers carrying the student token."""
    response = await client.post(
        f"{API}/sessions/{session['id']}/join",
        json={"pin": session["pin_code"], "student_id": student_id},
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


async def advance(client: AsyncClient, headers: dict, session_id: int) -> dict:
    response = await client.post(f"{API}/sessions/{session_id}/advance", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


async def answer(client: AsyncClient, headers: dict, question_id: int, choice: str):
    return await client.post(
        f"{API}/student/answers",
        json={"question_id": question_id, "selected_answer": choice},
        headers=headers,
    )
