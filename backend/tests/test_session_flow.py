"""
Test a whole session: test, analysis, lesson groups, retest and reports.
"""

import pytest
from httpx import AsyncClient

from classroom.db.base import get_db_session
from classroom.services import retest as retest_service
from classroom.services.analysis import claim_analysis

from conftest import (
    API,
    FakeContentGenerator,
    advance,
    answer,
    create_session,
    create_students,
    create_test,
    join,
    make_questions,
)

CONCEPTS = ["algebra", "algebra", "geometry", "geometry", "inference", "vocabulary"]

# Wrong answers per student, by question number; everything else is answered "A"
MISSES = {
    "Ada": {1, 2},
    "Ben": {1, 3},
    "Cy": {3},
}


@pytest.fixture
async def tested(async_client: AsyncClient, tutor_headers: dict) -> dict:
    """Three students have sat and submitted the test; the session is still testing."""
    test = await create_test(async_client, tutor_headers, make_questions(CONCEPTS))
    roster = await create_students(async_client, tutor_headers, list(MISSES))
    session = await create_session(async_client, tutor_headers, test["id"], tutor_count=1, retest_question_count=5)

    students = {}
    for student in roster:
        students[student["name"]] = {
            "id": student["id"],
            "headers": await join(async_client, session, student["id"]),
        }

    await advance(async_client, tutor_headers, session["id"])

    for name, student in students.items():
        for question in test["questions"]:
            choice = "B" if question["question_number"] in MISSES[name] else "A"
            response = await answer(async_client, student["headers"], question["id"], choice)
            assert response.status_code == 200
        await async_client.post(f"{API}/student/test/submit", headers=student["headers"])

    return {
        "session": session,
        "questions": {q["question_number"]: q["id"] for q in test["questions"]},
        "students": students,
    }


@pytest.fixture
async def lesson(async_client: AsyncClient, tutor_headers: dict, tested: dict) -> dict:
    """The same session after analysis has finished."""
    transition = await advance(async_client, tutor_headers, tested["session"]["id"])
    assert transition == {"status": "analyzing", "previous_status": "testing"}
    return tested


@pytest.fixture
async def retest(async_client: AsyncClient, tutor_headers: dict, lesson: dict) -> dict:
    """The same session after the tutor opened the retest."""
    transition = await advance(async_client, tutor_headers, lesson["session"]["id"])
    assert transition == {"status": "retest", "previous_status": "lesson"}
    return lesson


async def retest_for(async_client: AsyncClient, student: dict) -> dict:
    response = await async_client.get(f"{API}/student/retest/questions", headers=student["headers"])
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
class TestAnalysis:
    """Test the analysis pipeline run on entering analyzing."""

    async def test_job_completes_and_session_moves_to_lesson(self, async_client: AsyncClient, lesson: dict):
        """Test the job reaches 100% and the session lands in lesson."""
        session_id = lesson["session"]["id"]

        job = (await async_client.get(f"{API}/sessions/{session_id}/analysis")).json()
        assert job == {"status": "complete", "progress": 100, "error": None}

        status = (await async_client.get(f"{API}/sessions/{session_id}/status")).json()
        assert status["status"] == "lesson"

    async def test_groups(self, async_client: AsyncClient, tutor_headers: dict, lesson: dict):
        """Test the most-missed concept gets the tutor and the rest work independently."""
        groups = (await async_client.get(
            f"{API}/sessions/{lesson['session']['id']}/groups", headers=tutor_headers
        )).json()

        assert [(g["group_type"], g["concept_focus"]) for g in groups] == [
            ("tutor_1", "algebra"),
            ("independent", "mixed"),
        ]
        assert sorted(s["name"] for s in groups[0]["students"]) == ["Ada", "Ben"]
        assert [s["name"] for s in groups[1]["students"]] == ["Cy"]
        assert groups[0]["tutor_guide"] == "Guide for algebra"
        assert groups[0]["practice_problems"] == []
        assert groups[1]["tutor_guide"] is None
        assert len(groups[1]["practice_problems"]) == 3

    async def test_content_requests(self, lesson: dict, content_generator: FakeContentGenerator):
        """Test the guide covers the concept's questions and practice targets the group's own gaps."""
        questions = lesson["questions"]

        assert len(content_generator.guide_calls) == 1
        guide = content_generator.guide_calls[0]
        assert guide["concept"] == "algebra"
        assert guide["questions"] == [questions[1], questions[2]]
        assert sorted(guide["students"]) == ["Ada", "Ben"]

        assert content_generator.practice_calls == [{"concept": "geometry", "section": "math", "count": 3}]

    async def test_gap_analysis(self, async_client: AsyncClient, tutor_headers: dict, lesson: dict):
        """Test concept ranking and weak areas."""
        gaps = (await async_client.get(
            f"{API}/sessions/{lesson['session']['id']}/gaps", headers=tutor_headers
        )).json()

        assert [(c["concept"], c["count"]) for c in gaps["top_concepts"]] == [("algebra", 3), ("geometry", 2)]
        ada = next(s for s in gaps["student_summaries"] if s["student_id"] == lesson["students"]["Ada"]["id"])
        assert ada["weak_areas"] == ["algebra"]
        assert ada["score"] == 67

    async def test_practice_views(self, async_client: AsyncClient, lesson: dict):
        """Test independent students get problems and tutor-group students get none."""
        students = lesson["students"]

        cy = (await async_client.get(f"{API}/student/practice", headers=students["Cy"]["headers"])).json()
        assert cy["with_tutor"] is False
        assert cy["group"] == {"type": "independent", "concept": "mixed"}
        assert [p["id"] for p in cy["problems"]] == [f"practice-geometry-{i}" for i in range(3)]

        ada = (await async_client.get(f"{API}/student/practice", headers=students["Ada"]["headers"])).json()
        assert ada["with_tutor"] is True
        assert ada["problems"] == []

    async def test_rerun_replaces_groups(
        self, async_client: AsyncClient, tutor_headers: dict, lesson: dict, content_generator: FakeContentGenerator
    ):
        """Test re-running analysis clears the previous groups instead of stacking them."""
        session_id = lesson["session"]["id"]

        response = await async_client.post(f"{API}/sessions/{session_id}/analysis", headers=tutor_headers)
        assert response.json() == {"status": "started"}

        groups = (await async_client.get(f"{API}/sessions/{session_id}/groups", headers=tutor_headers)).json()
        assert len(groups) == 2
        assert len(content_generator.guide_calls) == 2
        status = (await async_client.get(f"{API}/sessions/{session_id}/status")).json()
        assert status["status"] == "lesson"

    async def test_start_refused_while_running(
        self, async_client: AsyncClient, tutor_headers: dict, tested: dict, content_generator: FakeContentGenerator
    ):
        """Test a second start during a run is refused and every student lands in one group."""
        session_id = tested["session"]["id"]
        overlapping = []

        async def start_again():
            overlapping.append(
                await async_client.post(f"{API}/sessions/{session_id}/analysis", headers=tutor_headers)
            )

        content_generator.on_guide = start_again
        await advance(async_client, tutor_headers, session_id)

        assert overlapping[0].status_code == 409
        assert overlapping[0].json()["detail"] == "Analysis is already running for this session"

        job = (await async_client.get(f"{API}/sessions/{session_id}/analysis")).json()
        assert job == {"status": "complete", "progress": 100, "error": None}
        groups = (await async_client.get(f"{API}/sessions/{session_id}/groups", headers=tutor_headers)).json()
        members = sorted(s["name"] for g in groups for s in g["students"])
        assert members == ["Ada", "Ben", "Cy"]
        assert len(content_generator.guide_calls) == 1

    async def test_claimed_job_starts_pending(self, async_client: AsyncClient, tutor_headers: dict, tested: dict):
        """Test a claimed job reads pending at 0% and blocks another start until it runs."""
        session_id = tested["session"]["id"]
        async with get_db_session() as db:
            await claim_analysis(db, session_id)
            await db.commit()

        job = (await async_client.get(f"{API}/sessions/{session_id}/analysis")).json()
        assert job == {"status": "pending", "progress": 0, "error": None}

        response = await async_client.post(f"{API}/sessions/{session_id}/analysis", headers=tutor_headers)
        assert response.status_code == 409

    async def test_rerun_after_failure(
        self, async_client: AsyncClient, tutor_headers: dict, tested: dict, content_generator: FakeContentGenerator
    ):
        """Test an errored job can be started again and finishes the analysis."""
        session_id = tested["session"]["id"]
        content_generator.fail_with = RuntimeError("upstream timeout")
        await advance(async_client, tutor_headers, session_id)

        content_generator.fail_with = None
        response = await async_client.post(f"{API}/sessions/{session_id}/analysis", headers=tutor_headers)
        assert response.status_code == 200

        job = (await async_client.get(f"{API}/sessions/{session_id}/analysis")).json()
        assert job == {"status": "complete", "progress": 100, "error": None}
        status = (await async_client.get(f"{API}/sessions/{session_id}/status")).json()
        assert status["status"] == "lesson"

    async def test_failure_recorded_on_job(
        self, async_client: AsyncClient, tutor_headers: dict, tested: dict, content_generator: FakeContentGenerator
    ):
        """Test a content failure marks the job as errored and leaves the session analyzing."""
        content_generator.fail_with = RuntimeError("upstream timeout")
        session_id = tested["session"]["id"]

        await advance(async_client, tutor_headers, session_id)

        job = (await async_client.get(f"{API}/sessions/{session_id}/analysis")).json()
        assert job["status"] == "error"
        assert job["error"] == "upstream timeout"
        status = (await async_client.get(f"{API}/sessions/{session_id}/status")).json()
        assert status["status"] == "analyzing"

    async def test_tutor_can_skip_to_retest_after_failure(
        self, async_client: AsyncClient, tutor_headers: dict, tested: dict, content_generator: FakeContentGenerator
    ):
        """Test analyzing advances straight to retest when analysis never finished."""
        content_generator.fail_with = RuntimeError("upstream timeout")
        session_id = tested["session"]["id"]
        await advance(async_client, tutor_headers, session_id)

        transition = await advance(async_client, tutor_headers, session_id)
        assert transition == {"status": "retest", "previous_status": "analyzing"}

    async def test_job_not_started(self, async_client: AsyncClient, tested: dict):
        """Test polling before analysis reports not_started."""
        job = (await async_client.get(f"{API}/sessions/{tested['session']['id']}/analysis")).json()
        assert job == {"status": "not_started", "progress": 0, "error": None}


@pytest.mark.asyncio
class TestRetest:
    """Test retest assembly and answering."""

    async def test_missed_questions_come_first(self, async_client: AsyncClient, retest: dict):
        """Test each retest starts with the student's misses and is padded to the target."""
        questions = retest["questions"]

        ada = await retest_for(async_client, retest["students"]["Ada"])
        ids = [item["id"] for item in ada["questions"]]
        assert ids[:2] == [questions[1], questions[2]]
        assert [item["source"] for item in ada["questions"]] == ["missed", "missed", "padding", "padding", "padding"]
        assert [item["retest_order"] for item in ada["questions"]] == [1, 2, 3, 4, 5]
        assert len(set(ids)) == 5
        assert "correct_answer" not in ada["questions"][0]

        cy = await retest_for(async_client, retest["students"]["Cy"])
        assert [item["id"] for item in cy["questions"]][:2] == [questions[3], questions[4]]

    async def test_duration_from_sections(self, async_client: AsyncClient, retest: dict):
        """Test five math questions get eight minutes."""
        ada = await retest_for(async_client, retest["students"]["Ada"])
        assert ada["duration"] == 8

    async def test_assembly_is_idempotent(self, async_client: AsyncClient, tutor_headers: dict, retest: dict):
        """Test preparing again leaves existing retests untouched."""
        before = await retest_for(async_client, retest["students"]["Ben"])

        response = await async_client.post(
            f"{API}/sessions/{retest['session']['id']}/prepare-retest", headers=tutor_headers
        )

        assert response.status_code == 200
        assert set(response.json()["assembled"].values()) == {0}
        assert await retest_for(async_client, retest["students"]["Ben"]) == before

    async def test_prepare_refused_during_testing(self, async_client: AsyncClient, tutor_headers: dict, tested: dict):
        """Test retests cannot be assembled while students are still answering."""
        response = await async_client.post(
            f"{API}/sessions/{tested['session']['id']}/prepare-retest", headers=tutor_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Retest not open yet"
        assert await retest_for(async_client, tested["students"]["Ada"]) == {"questions": [], "duration": 0}

    async def test_one_failed_student_does_not_block_the_rest(
        self, async_client: AsyncClient, tutor_headers: dict, lesson: dict, monkeypatch
    ):
        """Test a student whose assembly fails is skipped, reported and can be prepared again."""
        students = lesson["students"]
        ada_id = students["Ada"]["id"]
        assemble = retest_service.assemble_retest

        async def failing_for_ada(db, session, student_id, questions=None):
            if student_id == ada_id:
                raise RuntimeError("disk full")
            return await assemble(db, session, student_id, questions)

        monkeypatch.setattr(retest_service, "assemble_retest", failing_for_ada)
        await advance(async_client, tutor_headers, lesson["session"]["id"])

        assert (await retest_for(async_client, students["Ada"]))["questions"] == []
        assert len((await retest_for(async_client, students["Ben"]))["questions"]) == 5
        assert len((await retest_for(async_client, students["Cy"]))["questions"]) == 5

        url = f"{API}/sessions/{lesson['session']['id']}/prepare-retest"
        response = (await async_client.post(url, headers=tutor_headers)).json()
        assert response["success"] is False
        assert response["failed"] == [ada_id]

        monkeypatch.undo()
        response = (await async_client.post(url, headers=tutor_headers)).json()
        assert response["success"] is True
        assert response["assembled"][str(ada_id)] == 5
        assert response["failed"] == []
        assert len((await retest_for(async_client, students["Ada"]))["questions"]) == 5

    async def test_answers_limited_to_assigned_questions(self, async_client: AsyncClient, retest: dict):
        """Test a retest answer must be for a question on the student's retest."""
        student = retest["students"]["Ada"]
        assigned = [item["id"] for item in (await retest_for(async_client, student))["questions"]]
        unassigned = next(qid for qid in retest["questions"].values() if qid not in assigned)

        ok = await async_client.post(
            f"{API}/student/retest/answers",
            json={"question_id": assigned[0], "selected_answer": "A"},
            headers=student["headers"],
        )
        assert ok.status_code == 200

        refused = await async_client.post(
            f"{API}/student/retest/answers",
            json={"question_id": unassigned, "selected_answer": "A"},
            headers=student["headers"],
        )
        assert refused.status_code == 404

    async def test_main_test_closed_during_retest(self, async_client: AsyncClient, retest: dict):
        """Test main-test answers are refused once the retest opens."""
        response = await answer(async_client, retest["students"]["Ada"]["headers"], retest["questions"][1], "A")
        assert response.status_code == 400

    async def test_retest_answers_closed_before_retest(self, async_client: AsyncClient, lesson: dict):
        """Test retest answers are refused during the lesson."""
        response = await async_client.post(
            f"{API}/student/retest/answers",
            json={"question_id": lesson["questions"][1], "selected_answer": "A"},
            headers=lesson["students"]["Ada"]["headers"],
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Retest not active"

    async def test_review(self, async_client: AsyncClient, retest: dict):
        """Test the review shows the student's choices next to the correct answers."""
        review = (await async_client.get(
            f"{API}/student/test/review", headers=retest["students"]["Ada"]["headers"]
        )).json()

        assert [(r["selected_answer"], r["correct_answer"], r["is_correct"]) for r in review[:3]] == [
            ("B", "A", False),
            ("B", "A", False),
            ("A", "A", True),
        ]


@pytest.mark.asyncio
class TestReport:
    """Test the student progress report."""

    async def test_report_not_available_during_lesson(self, async_client: AsyncClient, lesson: dict):
        """Test reports wait for the retest."""
        response = await async_client.get(f"{API}/student/report", headers=lesson["students"]["Ada"]["headers"])
        assert response.status_code == 400

    async def test_report_after_retest(self, async_client: AsyncClient, tutor_headers: dict, retest: dict):
        """Test the report compares both sittings and is stored once."""
        student = retest["students"]["Ada"]
        for question_id in (retest["questions"][1], retest["questions"][2]):
            await async_client.post(
                f"{API}/student/retest/answers",
                json={"question_id": question_id, "selected_answer": "A"},
                headers=student["headers"],
            )
        await async_client.post(f"{API}/student/retest/submit", headers=student["headers"])
        await advance(async_client, tutor_headers, retest["session"]["id"])

        report = (await async_client.get(f"{API}/student/report", headers=student["headers"])).json()

        assert report["student_name"] == "Ada"
        assert report["test_score"] == {"correct": 4, "total": 6, "percentage": 67}
        assert report["retest_score"] == {"correct": 2, "total": 2, "percentage": 100}
        assert report["improvement"] == 33
        assert report["group_type"] == "tutor_1"
        assert report["concept_focus"] == "algebra"
        assert report["missed_concepts"] == [{"concept": "algebra", "missed_count": 2, "retest_correct": 2}]

        again = (await async_client.get(f"{API}/student/report", headers=student["headers"])).json()
        assert again == report
