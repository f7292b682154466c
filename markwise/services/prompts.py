# markwise/services/prompts.py
"""
Prompts sent to the OpenAI extraction and grading backends.
"""

MATH_NOTATION_RULES = """\
## MATHEMATICAL NOTATION (plain text):
- Exponents: x^2, e^(2x)
- Roots: sqrt(x), cbrt(x), root(n, x)
- Fractions: (a)/(b); keep numerator and denominator in brackets when compound
- Greek letters by name: alpha, beta, theta, pi, sigma, delta, lambda, mu
- Calculus: int(a, b) f(x) dx for integrals, d/dx, dy/dx, lim(x->a)
- Sums and products: sum(i=1, n) a_i, prod(i=1, n) a_i
- Matrices: [[a, b], [c, d]]; vectors: <x, y, z>
- Functions by name: sin, cos, tan, arcsin, ln, log_10, log_b
- Subscripts: x_1, a_n
"""

EXTRACTION_RULES = """\
## INSTRUCTIONS:
1. Extract ALL handwritten and printed content, in reading order
2. Keep question numbers and labels exactly as written (Q1, 2a, (ii), ...)
3. Put each question label at the start of its own line
4. Preserve tables as markdown tables and code with its indentation
5. For unclear handwriting, give your best reading
6. Do NOT add explanations, corrections or commentary
7. Do NOT skip any content
8. Write "(no answer)" under a question label with nothing written after it
"""

OCR_PROMPT_SINGLE = f"""\
You are an OCR system specialised in handwritten academic answers.

Extract everything visible on this answer page.

{MATH_NOTATION_RULES}
{EXTRACTION_RULES}
OUTPUT: only the extracted content."""


def ocr_prompt_batch(start_page: int, end_page: int, batch_num: int, total_batches: int) -> str:
    return f"""\
You are an OCR system specialised in handwritten academic answers.

These are pages {start_page} to {end_page} of a student's answer sheet \
(batch {batch_num} of {total_batches}). Earlier batches covered pages before \
{start_page}; answers may continue from a previous page.

Process the images in order, page {start_page} first.
Separate pages with a line "--- Page N ---" using the page number in the document.

{MATH_NOTATION_RULES}
{EXTRACTION_RULES}
OUTPUT: only the extracted content from all images."""


MARK_SCHEME_PDF_PROMPT = f"""\
Extract all text from this PDF. It is a mark scheme used to grade student work.

## CONTENT TO EXTRACT:
- Every question and sub-question, with its number
- Model answers and acceptable alternatives
- Mark allocations VERBATIM ([2], (1 mark), M1, A1, B1, ft, oe, cao)
- Marking guidance and examiner notes
- Tables as markdown tables

{MATH_NOTATION_RULES}
## INSTRUCTIONS:
1. Extract content from every page
2. Keep each mark allocation attached to the criterion it belongs to
3. Do NOT summarise, reorder or add commentary

OUTPUT: the complete mark scheme with its structure preserved."""


STRICTNESS_GUIDANCE = {
    "STRICT": (
        "STRICT: credit a criterion only when the student states it explicitly, "
        "with matching key terms, values or derivation steps. Do not infer intent."
    ),
    "FAIR": (
        "FAIR: credit a criterion when the student's answer clearly conveys the "
        "same point, even in different words or an equivalent mathematical form."
    ),
    "EASY": (
        "EASY: credit a criterion when the student's reasoning reaches the idea, "
        "accepting equivalent methods, partial wording and minor slips."
    ),
}

GRADING_SYSTEM_PROMPT = """\
You are an examiner grading a student's transcribed answers against a mark \
scheme. The mark scheme is the only source of truth: never award marks for \
points it does not list, even if the student's answer is otherwise valid. \
Treat mathematically equivalent expressions as equal (e.g. x^2/2 and (1/2)x^2).
Respond with JSON only."""


def grading_user_prompt(
    *,
    strictness: str,
    mark_scheme: str,
    transcript: str,
    reference_text: str | None = None,
) -> str:
    guidance = STRICTNESS_GUIDANCE.get(strictness, STRICTNESS_GUIDANCE["FAIR"])
    reference = ""
    if reference_text:
        reference = f"\nMARK SCHEME DOCUMENT (extra guidance):\n{reference_text}\n"

    return f"""\
STRICTNESS
{guidance}

MARK SCHEME (criterion ids in brackets, marks after the colon):
{mark_scheme}
{reference}
STUDENT ANSWERS (OCR transcript):
{transcript}

For every question, decide independently for each criterion whether the
student's answer satisfies it. Respond with:
{{
  "questions": [
    {{
      "question_id": <id>,
      "answer_text": "<the part of the transcript answering this question, or empty>",
      "matched_criteria": [<criterion ids>],
      "confidence": <0-100, how certain you are of these decisions>,
      "feedback": "<what was credited and what was missing>"
    }}
  ]
}}
Include every question, even unanswered ones."""
