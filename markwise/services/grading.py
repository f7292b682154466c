"""
Mark-Scheme Grader
Matches a submission transcript against per-question mark-scheme criteria.

Every grader returns exactly one ``GradedQuestion`` per question, in
question order. Awards are the sum of matched criterion marks, capped at the
question maximum. A question with no discernible answer gets 0 marks and
``NO_ANSWER_FEEDBACK`` instead of failing the submission.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable

from openai import AsyncOpenAI

from markwise.core.exceptions import BackendResponseError
from markwise.services.openai_client import chat_completion, strip_code_fences
from markwise.services.prompts import GRADING_SYSTEM_PROMPT, grading_user_prompt

logger = logging.getLogger(__name__)

NO_ANSWER_FEEDBACK = "No answer was found for this question."


@dataclass(frozen=True)
class Criterion:
    id: int
    description: str
    marks: int


@dataclass(frozen=True)
class QuestionScheme:
    id: int
    sequence: int
    label: str
    prompt: str
    max_marks: int
    criteria: tuple[Criterion, ...] = ()


@dataclass(frozen=True)
class MarkScheme:
    """Grading input for one assessment, detached from the ORM."""
    assessment_id: int
    title: str
    strictness: str
    total_marks: int
    questions: tuple[QuestionScheme, ...]
    reference_text: str | None = None


@dataclass(frozen=True)
class GradedQuestion:
    question_id: int
    awarded_marks: int
    confidence: float  # 0-100
    feedback: str
    ocr_text: str | None = None
    matched_criteria: tuple[int, ...] = field(default=())


def capped_award(question: QuestionScheme, matched_ids: Iterable[int]) -> int:
    """Sum of the matched criteria's marks, clamped to [0, max_marks]."""
    wanted = set(matched_ids)
    raw = sum(c.marks for c in question.criteria if c.id in wanted)
    return max(0, min(raw, question.max_marks))


_BLANK_ANSWER = re.compile(
    r"^[\W_]*(?:no answer|not answered|blank|left blank|n/a)?[\W_]*$", re.IGNORECASE
)


def is_blank_answer(answer: str | None) -> bool:
    """Nothing written, or only a placeholder such as "(no answer)"."""
    return not answer or _BLANK_ANSWER.match(answer.strip()) is not None


def no_answer(question: QuestionScheme, ocr_text: str | None = None) -> GradedQuestion:
    return GradedQuestion(
        question_id=question.id,
        awarded_marks=0,
        confidence=100.0,
        feedback=NO_ANSWER_FEEDBACK,
        ocr_text=ocr_text,
    )


def finalize_results(
    scheme: MarkScheme, results: dict[int, GradedQuestion]
) -> list[GradedQuestion]:
    """
    One result per question in question order; questions the grader skipped
    become "no answer", awards outside [0, max_marks] are clamped.
    """
    final = []
    for question in scheme.questions:
        result = results.get(question.id)
        if result is None:
            final.append(no_answer(question))
            continue
        awarded = max(0, min(result.awarded_marks, question.max_marks))
        confidence = max(0.0, min(float(result.confidence), 100.0))
        if awarded != result.awarded_marks or confidence != result.confidence:
            result = GradedQuestion(
                question_id=result.question_id,
                awarded_marks=awarded,
                confidence=confidence,
                feedback=result.feedback,
                ocr_text=result.ocr_text,
                matched_criteria=result.matched_criteria,
            )
        final.append(result)
    return final


# ---------------------------------------------------------------------------
# Transcript segmentation
# ---------------------------------------------------------------------------

_SEPARATOR_LINE = re.compile(r"^\s*-{3,}.*$", re.MULTILINE)


def _label_pattern(label: str, *, prefixed: bool) -> re.Pattern:
    # prefixed: "Q1.", "Question 2:", "## Q2a"; bare: "3)", "**1b**", "2."
    prefix = r"(?:question|q)[ \t]*\.?[ \t]*" if prefixed else ""
    return re.compile(
        r"^[ \t>#*]*" + prefix
        + re.escape(label)
        + r"(?=[).:\]*]|\s|$)[).:\]*]*",
        re.IGNORECASE | re.MULTILINE,
    )


def _clean(text: str) -> str:
    return _SEPARATOR_LINE.sub("", text).strip()


@dataclass(frozen=True)
class Segmentation:
    segments: dict[int, str | None]
    segmented: bool


def _find_markers(transcript: str, questions: list[QuestionScheme], *, prefixed: bool):
    # each heading must follow the previous question's heading
    markers = []
    pos = 0
    for question in sorted(questions, key=lambda q: q.sequence):
        match = _label_pattern(question.label, prefixed=prefixed).search(transcript, pos)
        if match:
            markers.append((match.start(), match.end(), question.id))
            pos = match.end()
    return markers


def segment_transcript(transcript: str, questions: Iterable[QuestionScheme]) -> Segmentation:
    """
    Attribute transcript text to questions by their printed labels.

    "Q"/"Question" headings are used whenever the transcript has any, so
    numbered working steps inside an answer are not mistaken for questions;
    bare numerals are the fallback. When no label is found at all the
    transcript cannot be split; every question then sees the whole text and
    ``segmented`` is False.
    """
    questions = list(questions)
    markers = _find_markers(transcript, questions, prefixed=True)
    if not markers:
        markers = _find_markers(transcript, questions, prefixed=False)

    if not markers:
        whole = _clean(transcript)
        return Segmentation({q.id: whole for q in questions}, segmented=False)

    segments: dict[int, str | None] = {q.id: None for q in questions}
    for i, (_, end, question_id) in enumerate(markers):
        stop = markers[i + 1][0] if i + 1 < len(markers) else len(transcript)
        segments[question_id] = _clean(transcript[end:stop])
    return Segmentation(segments, segmented=True)


# ---------------------------------------------------------------------------
# Graders
# ---------------------------------------------------------------------------

class Grader(ABC):
    """Grading backend."""

    name = "base"

    @abstractmethod
    async def grade(self, transcript: str, scheme: MarkScheme) -> list[GradedQuestion]:
        ...


_MATH_SYMBOLS = {
    "²": "^2", "³": "^3", "√": "sqrt ", "π": "pi", "θ": "theta", "α": "alpha",
    "β": "beta", "λ": "lambda", "Δ": "delta", "δ": "delta", "σ": "sigma",
    "Σ": "sum ", "μ": "mu", "∫": "int ", "×": "*", "÷": "/", "−": "-",
}
_TOKEN_RE = re.compile(r"[a-z0-9]+(?:[\^_./][a-z0-9]+)*")
_STOPWORDS = frozenset(
    """a an the of to and or is are was were be been being it its this that these
    those in on at by for with as from into than then so such which who what when
    where how do does did has have had not but if their there they them we you i he
    she his her our your can will would should could may might must also very""".split()
)

# fraction of a criterion's key terms that must appear in the answer
KEYWORD_THRESHOLDS = {"STRICT": 1.0, "FAIR": 0.75, "EASY": 0.5}


def _fold(token: str) -> str:
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def key_terms(text: str, *, fold: bool = False) -> set[str]:
    for symbol, replacement in _MATH_SYMBOLS.items():
        text = text.replace(symbol, replacement)
    text = text.lower()
    tokens = _TOKEN_RE.findall(text)
    terms = {t for t in tokens if t not in _STOPWORDS} or set(tokens)
    if fold:
        terms = {_fold(t) for t in terms}
    return terms


def match_certainty(score: float, threshold: float) -> float:
    """0.5 at the threshold, 1.0 at the far end of either side."""
    if score >= threshold:
        span = 1.0 - threshold
        margin = 1.0 if span <= 0 else (score - threshold) / span
    else:
        margin = (threshold - score) / threshold if threshold > 0 else 1.0
    return 0.5 + 0.5 * min(max(margin, 0.0), 1.0)


def criteria_feedback(
    question: QuestionScheme, matched_ids: Iterable[int], strictness: str
) -> str:
    matched = set(matched_ids)
    credited = [c for c in question.criteria if c.id in matched]
    missing = [c for c in question.criteria if c.id not in matched]

    parts = []
    if credited:
        parts.append(
            "Credited: " + "; ".join(f"{c.description} (+{c.marks})" for c in credited) + "."
        )
    if missing:
        parts.append("Not credited: " + "; ".join(c.description for c in missing) + ".")
    raw = sum(c.marks for c in credited)
    if raw > question.max_marks:
        parts.append(f"Award capped at {question.max_marks} marks.")
    parts.append(f"Marked with {strictness.lower()} strictness.")
    return " ".join(parts)


class CriterionMatchingGrader(Grader):
    """
    Grades each question locally: the transcript is split by question label
    and every criterion is checked against that question's answer.
    """

    @abstractmethod
    def grade_question(
        self, question: QuestionScheme, answer: str, strictness: str
    ) -> tuple[tuple[int, ...], float]:
        """Return the matched criterion ids and a 0-100 confidence."""

    def grade_all(self, transcript: str, scheme: MarkScheme) -> list[GradedQuestion]:
        segmentation = segment_transcript(transcript, scheme.questions)

        results = {}
        for question in scheme.questions:
            answer = segmentation.segments.get(question.id)
            ocr_text = answer if segmentation.segmented else None
            if is_blank_answer(answer):
                results[question.id] = no_answer(question, ocr_text)
                continue

            matched, confidence = self.grade_question(question, answer, scheme.strictness)
            results[question.id] = GradedQuestion(
                question_id=question.id,
                awarded_marks=capped_award(question, matched),
                confidence=confidence,
                feedback=criteria_feedback(question, matched, scheme.strictness),
                ocr_text=ocr_text,
                matched_criteria=matched,
            )
        return finalize_results(scheme, results)


class KeywordGrader(CriterionMatchingGrader):
    """
    Deterministic grader: a criterion is met when enough of its key terms
    appear in the question's answer. STRICT needs every term verbatim; FAIR
    and EASY also fold plurals.
    """

    name = "keyword"

    def grade_question(
        self, question: QuestionScheme, answer: str, strictness: str
    ) -> tuple[tuple[int, ...], float]:
        threshold = KEYWORD_THRESHOLDS.get(strictness, KEYWORD_THRESHOLDS["FAIR"])
        fold = strictness != "STRICT"
        answer_terms = key_terms(answer, fold=fold)

        matched = []
        certainties = []
        for criterion in question.criteria:
            terms = key_terms(criterion.description, fold=fold)
            coverage = len(terms & answer_terms) / len(terms) if terms else 0.0
            if coverage >= threshold:
                matched.append(criterion.id)
            certainties.append(match_certainty(coverage, threshold))

        confidence = 100.0 * sum(certainties) / len(certainties) if certainties else 50.0
        return tuple(matched), round(confidence, 1)

    async def grade(self, transcript: str, scheme: MarkScheme) -> list[GradedQuestion]:
        return self.grade_all(transcript, scheme)


def render_mark_scheme(scheme: MarkScheme) -> str:
    lines = []
    for question in scheme.questions:
        lines.append(
            f"Question {question.label} (question_id {question.id}, "
            f"max {question.max_marks} marks): {question.prompt}"
        )
        for criterion in question.criteria:
            lines.append(f"  [{criterion.id}] {criterion.description}: {criterion.marks}")
    return "\n".join(lines)


class OpenAIGrader(Grader):
    """
    Grades through an OpenAI chat model in JSON mode.

    The model only decides which criteria are met; awards are computed here
    from the criterion marks so they can never exceed the mark scheme.
    """

    name = "openai"

    def __init__(self, client: AsyncOpenAI, *, model: str):
        self.client = client
        self.model = model

    async def grade(self, transcript: str, scheme: MarkScheme) -> list[GradedQuestion]:
        if not transcript.strip():
            return [no_answer(q) for q in scheme.questions]

        text = await chat_completion(
            self.client,
            model=self.model,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": GRADING_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": grading_user_prompt(
                        strictness=scheme.strictness,
                        mark_scheme=render_mark_scheme(scheme),
                        transcript=transcript,
                        reference_text=scheme.reference_text,
                    ),
                },
            ],
        )
        return self.parse_response(text, scheme)

    def parse_response(self, text: str, scheme: MarkScheme) -> list[GradedQuestion]:
        try:
            payload = json.loads(strip_code_fences(text))
        except json.JSONDecodeError as e:
            raise BackendResponseError(f"grading response is not valid JSON: {e}") from e

        items = payload.get("questions") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise BackendResponseError("grading response has no 'questions' list")

        by_id = {q.id: q for q in scheme.questions}
        results = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                question = by_id.get(int(item.get("question_id")))
            except (TypeError, ValueError):
                question = None
            if question is None:
                logger.warning(f"Grader returned unknown question id: {item.get('question_id')!r}")
                continue

            valid_ids = {c.id for c in question.criteria}
            raw_ids = item.get("matched_criteria")
            if not isinstance(raw_ids, list):
                raw_ids = []
            matched = []
            for raw_id in raw_ids:
                try:
                    criterion_id = int(raw_id)
                except (TypeError, ValueError):
                    continue
                if criterion_id in valid_ids and criterion_id not in matched:
                    matched.append(criterion_id)

            answer = str(item.get("answer_text") or "").strip() or None
            if answer is None and not matched:
                results[question.id] = no_answer(question)
                continue

            try:
                confidence = float(item.get("confidence", 50))
            except (TypeError, ValueError):
                confidence = 50.0

            feedback = str(item.get("feedback") or "").strip()
            results[question.id] = GradedQuestion(
                question_id=question.id,
                awarded_marks=capped_award(question, matched),
                confidence=confidence,
                feedback=feedback or criteria_feedback(question, matched, scheme.strictness),
                ocr_text=answer,
                matched_criteria=tuple(matched),
            )

        return finalize_results(scheme, results)
