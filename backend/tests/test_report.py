"""
Test the student improvement report.
"""

from classroom.engine.report import GradedAnswer, build_report


def graded(qid, correct, concept):
    return GradedAnswer(question_id=qid, is_correct=correct, concept_tag=concept)


class TestBuildReport:
    """Test test-versus-retest comparison."""

    def test_scores_and_improvement(self):
        """Test percentages for both sittings and the difference between them."""
        test = [graded(1, True, "algebra"), graded(2, False, "algebra"), graded(3, False, "geometry"), graded(4, False, "geometry")]
        retest = [graded(2, True, "algebra"), graded(3, True, "geometry"), graded(4, False, "geometry"), graded(5, True, "algebra")]

        report = build_report("Ada", test, retest, group_type="tutor_1", concept_focus="geometry")

        assert report.student_name == "Ada"
        assert (report.test_score.correct, report.test_score.total, report.test_score.percentage) == (1, 4, 25)
        assert (report.retest_score.correct, report.retest_score.total, report.retest_score.percentage) == (3, 4, 75)
        assert report.improvement == 50
        assert report.group_type == "tutor_1"
        assert report.concept_focus == "geometry"

    def test_missed_concepts_ordered_by_miss_count(self):
        """Test concepts missed on the main test are listed, most missed first."""
        test = [graded(1, False, "algebra"), graded(2, False, "geometry"), graded(3, False, "geometry")]
        retest = [graded(1, True, "algebra"), graded(2, True, "geometry"), graded(9, True, "vocabulary")]

        report = build_report("Ada", test, retest)

        assert [(c.concept, c.missed_count, c.retest_correct) for c in report.missed_concepts] == [
            ("geometry", 2, 1),
            ("algebra", 1, 1),
        ]

    def test_missing_concept_tag_reported_as_unknown(self):
        """Test untagged misses are grouped under "unknown"."""
        report = build_report("Ada", [graded(1, None, None)], [])
        assert [c.concept for c in report.missed_concepts] == ["unknown"]
        assert report.retest_score.percentage == 0

    def test_to_dict(self):
        """Test the summary serializes to plain nested dicts."""
        summary = build_report("Ada", [graded(1, True, "algebra")], [graded(1, True, "algebra")]).to_dict()

        assert summary["test_score"] == {"correct": 1, "total": 1, "percentage": 100}
        assert summary["improvement"] == 0
        assert summary["missed_concepts"] == []
        assert summary["practice_completed"] is True
