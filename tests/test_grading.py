"""
Mark-scheme grading: segmentation, criterion matching, capping and the
no-answer policy, plus parsing of the AI grader's JSON.
"""

import json

import pytest

from markwise.core.exceptions import BackendResponseError
from markwise.services.grading import (
    NO_ANSWER_FEEDBACK,
    Criterion,
    GradedQuestion,
    KeywordGrader,
    MarkScheme,
    OpenAIGrader,
    QuestionScheme,
    finalize_results,
    key_terms,
    segment_transcript,
)

from tests.conftest import SCENARIO_TRANSCRIPT


def _scheme(strictness="FAIR"):
    return MarkScheme(
        assessment_id=1,
        title="Differentiation quiz",
        strictness=strictness,
        total_marks=15,
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
            QuestionScheme(
                id=20,
                sequence=2,
                label="2",
                prompt="Integrate 3x^2 from 0 to 1.",
                max_marks=10,
                criteria=(
                    Criterion(200, "antiderivative x^3", 4),
                    Criterion(201, "evaluate limits result 1", 6),
                ),
            ),
        ),
    )


class TestSegmentation:

    def test_numbered_steps_stay_with_their_question(self):
        scheme = _scheme()
        transcript = "Q1\n1. apply the power rule\n2. derivative is 2x\n\nQ2\n(no answer)"
        seg = segment_transcript(transcript, scheme.questions)

        assert seg.segments[10] == "1. apply the power rule\n2. derivative is 2x"
        assert seg.segments[20] == "(no answer)"

    def test_bare_labels_must_follow_previous_question(self):
        scheme = _scheme()
        seg = segment_transcript("2) the integral first\n1) then the derivative", scheme.questions)

        assert seg.segments[10] == "then the derivative"
        assert seg.segments[20] is None

    def test_splits_by_question_labels(self):
        scheme = _scheme()
        seg = segment_transcript("Q1. first answer\n\n---\n\nQuestion 2: second answer", scheme.questions)

        assert seg.segmented
        assert seg.segments[10] == "first answer"
        assert seg.segments[20] == "second answer"

    def test_missing_label_means_no_segment(self):
        scheme = _scheme()
        seg = segment_transcript("1) only the first one", scheme.questions)

        assert seg.segments[10] == "only the first one"
        assert seg.segments[20] is None

    def test_unlabelled_transcript_is_shared(self):
        scheme = _scheme()
        seg = segment_transcript("some working without labels", scheme.questions)

        assert not seg.segmented
        assert seg.segments[10] == seg.segments[20] == "some working without labels"

    def test_label_must_not_match_inside_expression(self):
        scheme = _scheme()
        seg = segment_transcript("Q1\n2x is the answer", scheme.questions)

        assert seg.segments[10] == "2x is the answer"
        assert seg.segments[20] is None


class TestKeyTerms:

    def test_math_symbols_are_spelled_out(self):
        assert {"x^2", "pi"} <= key_terms("x² times π")

    def test_stopwords_dropped(self):
        assert key_terms("the power of the rule") == {"power", "rule"}

    def test_plural_folding(self):
        assert key_terms("roots glass", fold=True) == {"root", "glass"}


class TestKeywordGrader:

    @pytest.mark.asyncio
    async def test_numbered_working_is_not_a_question_heading(self):
        transcript = "Q1\n1. apply the power rule\n2. derivative is 2x\n\nQ2\n(no answer)"
        q1, q2 = await KeywordGrader().grade(transcript, _scheme())

        assert q1.awarded_marks == 5
        assert q2.awarded_marks == 0
        assert q2.feedback == NO_ANSWER_FEEDBACK

    @pytest.mark.asyncio
    async def test_two_question_scenario(self):
        results = await KeywordGrader().grade(SCENARIO_TRANSCRIPT, _scheme())

        assert [r.question_id for r in results] == [10, 20]
        q1, q2 = results
        assert q1.awarded_marks == 5
        assert set(q1.matched_criteria) == {100, 101}
        assert "Not credited: substitute point coordinates" in q1.feedback
        assert q2.awarded_marks == 0
        assert q2.feedback == NO_ANSWER_FEEDBACK
        assert sum(r.awarded_marks for r in results) == 5

    @pytest.mark.asyncio
    async def test_award_capped_at_question_max(self):
        scheme = MarkScheme(
            assessment_id=1,
            title="t",
            strictness="FAIR",
            total_marks=3,
            questions=(
                QuestionScheme(
                    id=1,
                    sequence=1,
                    label="1",
                    prompt="p",
                    max_marks=3,
                    criteria=(Criterion(1, "mitochondria", 2), Criterion(2, "energy", 2)),
                ),
            ),
        )
        (result,) = await KeywordGrader().grade("Q1 mitochondria release energy", scheme)

        assert result.awarded_marks == 3
        assert "Award capped at 3 marks." in result.feedback

    @pytest.mark.parametrize(
        "strictness, expected",
        [("STRICT", 0), ("FAIR", 2), ("EASY", 2)],
    )
    @pytest.mark.asyncio
    async def test_strictness_controls_matching(self, strictness, expected):
        scheme = MarkScheme(
            assessment_id=1,
            title="t",
            strictness=strictness,
            total_marks=2,
            questions=(
                QuestionScheme(
                    id=1,
                    sequence=1,
                    label="1",
                    prompt="p",
                    max_marks=2,
                    criteria=(Criterion(1, "identify both roots", 2),),
                ),
            ),
        )
        (result,) = await KeywordGrader().grade("Q1 identify both root", scheme)

        assert result.awarded_marks == expected
        assert f"Marked with {strictness.lower()} strictness." in result.feedback

    @pytest.mark.asyncio
    async def test_easy_accepts_partial_wording(self):
        scheme = _scheme("EASY")
        results = await KeywordGrader().grade("Q1 power rule\nQ2 nothing useful", scheme)

        assert results[0].matched_criteria == (100,)

    @pytest.mark.asyncio
    async def test_confidence_in_range(self):
        results = await KeywordGrader().grade(SCENARIO_TRANSCRIPT, _scheme())
        assert all(0 <= r.confidence <= 100 for r in results)


class TestFinalizeResults:

    def test_fills_missing_and_clamps(self):
        scheme = _scheme()
        results = finalize_results(
            scheme,
            {10: GradedQuestion(question_id=10, awarded_marks=9, confidence=140, feedback="x")},
        )

        assert results[0].awarded_marks == 5
        assert results[0].confidence == 100
        assert results[1].awarded_marks == 0
        assert results[1].feedback == NO_ANSWER_FEEDBACK


class TestOpenAIGraderParsing:

    def _grader(self):
        # parsing never touches the client
        return OpenAIGrader(client=None, model="test-model")

    def test_awards_computed_from_criteria(self):
        text = json.dumps(
            {
                "questions": [
                    {
                        "question_id": 10,
                        "answer_text": "power rule gives 2x",
                        "matched_criteria": [100, 101, 101, 999],
                        "confidence": 88,
                        "feedback": "Good differentiation.",
                    },
                    {"question_id": 20, "answer_text": "", "matched_criteria": []},
                ]
            }
        )
        q1, q2 = self._grader().parse_response(text, _scheme())

        assert q1.awarded_marks == 5
        assert q1.matched_criteria == (100, 101)
        assert q1.confidence == 88
        assert q1.ocr_text == "power rule gives 2x"
        assert q2.feedback == NO_ANSWER_FEEDBACK

    def test_code_fenced_json_is_accepted(self):
        text = "```json\n" + json.dumps({"questions": []}) + "\n```"
        results = self._grader().parse_response(text, _scheme())

        assert [r.awarded_marks for r in results] == [0, 0]

    def test_model_cannot_exceed_question_max(self):
        text = json.dumps(
            {
                "questions": [
                    {
                        "question_id": 10,
                        "answer_text": "everything",
                        "matched_criteria": [100, 101, 102],
                        "confidence": 90,
                    }
                ]
            }
        )
        q1, _ = self._grader().parse_response(text, _scheme())

        assert q1.awarded_marks == 5
        assert "Award capped at 5 marks." in q1.feedback

    @pytest.mark.parametrize("raw", ["1,2", "12", 1, {"1": True}])
    def test_matched_criteria_must_be_a_list(self, raw):
        scheme = MarkScheme(
            assessment_id=1,
            title="t",
            strictness="FAIR",
            total_marks=5,
            questions=(
                QuestionScheme(
                    id=10,
                    sequence=1,
                    label="1",
                    prompt="p",
                    max_marks=5,
                    criteria=(Criterion(1, "first point", 2), Criterion(2, "second point", 3)),
                ),
            ),
        )
        text = json.dumps(
            {"questions": [{"question_id": 10, "answer_text": "some work", "matched_criteria": raw}]}
        )
        (q1,) = self._grader().parse_response(text, scheme)

        assert q1.awarded_marks == 0
        assert q1.matched_criteria == ()

    @pytest.mark.parametrize("text", ["not json", json.dumps({"marks": 3}), json.dumps([1, 2])])
    def test_unparsable_response_raises(self, text):
        with pytest.raises(BackendResponseError):
            self._grader().parse_response(text, _scheme())
