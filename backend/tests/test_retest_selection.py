"""
Test retest question selection and time budgets.
"""

import random
from types import SimpleNamespace

from classroom.engine.retest import (
    MISSED,
    PADDING,
    calculate_retest_duration,
    duration_for_questions,
    retest_seed,
    select_retest_questions,
)


def make_questions(concepts):
    return [SimpleNamespace(id=i, concept_tag=concept) for i, concept in enumerate(concepts, start=1)]


class TestSelectRetestQuestions:
    """Test the three-tier fill."""

    def test_fills_to_target_with_missed_first(self):
        """Test 5 misses on a 50-question test give 20 questions, misses first."""
        concepts = ["algebra", "geometry", "inference", "statistics", "vocabulary"]
        questions = make_questions([concepts[i % 5] for i in range(50)])
        missed = [3, 8, 14, 27, 41]

        items = select_retest_questions(questions, missed, 20, rng=random.Random(1))

        assert len(items) == 20
        assert [item.question_id for item in items[:5]] == missed
        assert all(item.source == MISSED for item in items[:5])
        assert all(item.source == PADDING for item in items[5:])
        assert len({item.question_id for item in items}) == 20
        assert [item.order for item in items] == list(range(1, 21))

    def test_same_concept_padding_in_test_order(self):
        """Test padding prefers questions sharing a missed concept."""
        questions = make_questions(["a", "b", "a", "b", "a", "c"])

        items = select_retest_questions(questions, [1], 3, rng=random.Random(0))

        assert [item.question_id for item in items] == [1, 3, 5]
        assert [item.source for item in items] == [MISSED, PADDING, PADDING]

    def test_random_padding_when_concepts_run_out(self):
        """Test remaining slots come from the rest of the test without repeats."""
        questions = make_questions(["a", "a", "b", "c", "d", "e"])

        items = select_retest_questions(questions, [1], 5, rng=random.Random(7))

        ids = [item.question_id for item in items]
        assert ids[:2] == [1, 2]
        assert len(ids) == len(set(ids)) == 5
        assert set(ids[2:]) <= {3, 4, 5, 6}

    def test_truncates_when_misses_exceed_target(self):
        """Test more misses than the target keeps only the first ones."""
        questions = make_questions(["a"] * 10)

        items = select_retest_questions(questions, list(range(1, 11)), 4)

        assert [item.question_id for item in items] == [1, 2, 3, 4]
        assert all(item.source == MISSED for item in items)

    def test_short_test_gives_everything(self):
        """Test a test smaller than the target yields every question once."""
        questions = make_questions(["a", "b", "c"])
        items = select_retest_questions(questions, [2], 20, rng=random.Random(3))
        assert sorted(item.question_id for item in items) == [1, 2, 3]

    def test_unknown_and_duplicate_missed_ids_ignored(self):
        """Test missed ids outside the test or repeated are skipped."""
        questions = make_questions(["a", "b"])
        items = select_retest_questions(questions, [2, 2, 99], 1)
        assert [item.question_id for item in items] == [2]

    def test_zero_target(self):
        """Test a non-positive target selects nothing."""
        assert select_retest_questions(make_questions(["a"]), [1], 0) == []

    def test_same_seed_same_padding(self):
        """Test seeding by session and student makes the random tier repeatable."""
        questions = make_questions([f"c{i}" for i in range(30)])
        seed = retest_seed(4, 9)

        first = select_retest_questions(questions, [1], 10, rng=random.Random(seed))
        second = select_retest_questions(questions, [1], 10, rng=random.Random(seed))

        assert first == second


class TestRetestDuration:
    """Test time budgets."""

    def test_mixed_sections(self):
        """Test 10 math and 10 reading/writing questions take 28 minutes."""
        assert calculate_retest_duration(10, 10) == 28

    def test_rounds_up(self):
        """Test partial minutes round up."""
        assert calculate_retest_duration(1, 0) == 2
        assert calculate_retest_duration(0, 1) == 2
        assert calculate_retest_duration(0, 4) == 5
        assert calculate_retest_duration(0, 0) == 0

    def test_duration_for_questions(self):
        """Test the section mix of actual questions is counted."""
        questions = [SimpleNamespace(section="math")] * 3 + [SimpleNamespace(section="reading_writing")] * 2
        assert duration_for_questions(questions) == 7
