"""
Embedding grader thresholds and strictness. Similarities are fixed per
criterion so no model is downloaded.
"""

import pytest

pytest.importorskip("torch")
pytest.importorskip("transformers")

from markwise.services.grading import NO_ANSWER_FEEDBACK, Criterion, MarkScheme, QuestionScheme  # noqa: E402
from markwise.services.transformer_grader import TransformerGrader, split_sentences  # noqa: E402


class FixedSimilarityGrader(TransformerGrader):
    def __init__(self, similarities):
        super().__init__("unused-model")
        self.similarities = similarities

    def best_similarities(self, criteria, sentences):
        return [self.similarities.get(c, 0.0) for c in criteria]


def _scheme(strictness):
    return MarkScheme(
        assessment_id=1,
        title="Differentiation quiz",
        strictness=strictness,
        total_marks=5,
        questions=(
            QuestionScheme(
                id=10,
                sequence=1,
                label="1",
                prompt="Differentiate x^2.",
                max_marks=5,
                criteria=(
                    Criterion(100, "apply power rule", 2),
                    Criterion(101, "derivative 2x", 3),
                    Criterion(102, "substitute point coordinates", 2),
                ),
            ),
        ),
    )


SIMILARITIES = {
    "apply power rule": 0.85,
    "derivative 2x": 0.70,
    "substitute point coordinates": 0.55,
}


def test_split_sentences():
    assert split_sentences("Use the power rule. So 2x!\n\nDone") == [
        "Use the power rule.",
        "So 2x!",
        "Done",
    ]


@pytest.mark.parametrize(
    "strictness, matched, marks",
    [
        ("STRICT", (100,), 2),
        ("FAIR", (100, 101), 5),
        # all three criteria match but the question caps at 5
        ("EASY", (100, 101, 102), 5),
    ],
)
def test_thresholds_follow_strictness(strictness, matched, marks):
    grader = FixedSimilarityGrader(SIMILARITIES)

    (result,) = grader.grade_all("Q1. Power rule gives 2x.", _scheme(strictness))

    assert result.matched_criteria == matched
    assert result.awarded_marks == marks
    assert 0 <= result.confidence <= 100


def test_blank_answer_gets_no_answer():
    grader = FixedSimilarityGrader(SIMILARITIES)

    (result,) = grader.grade_all("Q1.\n", _scheme("FAIR"))

    assert result.awarded_marks == 0
    assert result.feedback == NO_ANSWER_FEEDBACK


@pytest.mark.asyncio
async def test_grade_runs_off_the_event_loop():
    grader = FixedSimilarityGrader(SIMILARITIES)

    (result,) = await grader.grade("Q1. Power rule gives 2x.", _scheme("FAIR"))

    assert result.awarded_marks == 5
