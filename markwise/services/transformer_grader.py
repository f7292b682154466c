"""
Transformer Grader
Matches mark-scheme criteria against answer sentences with a local
sentence-embedding model, no network backend required.

Needs the ``ml`` extra (torch + transformers).
"""

import logging
import re
from typing import Sequence

import torch
import torch.nn.functional as F
from fastapi.concurrency import run_in_threadpool
from transformers import AutoModel, AutoTokenizer

from markwise.core.exceptions import ConfigurationError
from markwise.services.grading import (
    CriterionMatchingGrader,
    GradedQuestion,
    MarkScheme,
    QuestionScheme,
    match_certainty,
)

logger = logging.getLogger(__name__)

# cosine similarity a criterion needs against its best-matching sentence
SIMILARITY_THRESHOLDS = {"STRICT": 0.80, "FAIR": 0.65, "EASY": 0.50}

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?;])\s+|\n+")


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s and s.strip()]


class TransformerGrader(CriterionMatchingGrader):
    """
    A criterion counts as met when its embedding is close enough to some
    sentence of the question's answer. The model is loaded on first use and
    kept for the lifetime of the grader.
    """

    name = "transformer"

    def __init__(self, model_name: str, *, device: str = "cpu"):
        self.model_name = model_name
        self.device = device
        self._tokenizer = None
        self._model = None

    def _load(self):
        if self._model is None:
            logger.info(f"Loading embedding model {self.model_name} on {self.device}")
            try:
                self._tokenizer = AutoTokenizer.from_pretrained(self.model_name)
                model = AutoModel.from_pretrained(self.model_name)
            except OSError as e:
                raise ConfigurationError(
                    f"embedding model {self.model_name!r} could not be loaded: {e}"
                ) from e
            model.to(self.device)
            model.eval()
            self._model = model
        return self._tokenizer, self._model

    def encode(self, texts: Sequence[str]) -> torch.Tensor:
        """Mean-pooled, L2-normalised embeddings, one row per text."""
        tokenizer, model = self._load()
        batch = tokenizer(
            list(texts), padding=True, truncation=True, max_length=256, return_tensors="pt"
        ).to(self.device)
        with torch.no_grad():
            output = model(**batch)
        mask = batch["attention_mask"].unsqueeze(-1).float()
        summed = (output.last_hidden_state * mask).sum(dim=1)
        pooled = summed / mask.sum(dim=1).clamp(min=1e-9)
        return F.normalize(pooled, p=2, dim=1)

    def best_similarities(self, criteria: Sequence[str], sentences: Sequence[str]) -> list[float]:
        """For each criterion, its highest cosine similarity to any sentence."""
        embeddings = self.encode([*criteria, *sentences])
        criterion_vecs = embeddings[: len(criteria)]
        sentence_vecs = embeddings[len(criteria):]
        similarity = criterion_vecs @ sentence_vecs.T
        return similarity.max(dim=1).values.tolist()

    def grade_question(
        self, question: QuestionScheme, answer: str, strictness: str
    ) -> tuple[tuple[int, ...], float]:
        sentences = split_sentences(answer)
        if not question.criteria or not sentences:
            return (), 50.0

        threshold = SIMILARITY_THRESHOLDS.get(strictness, SIMILARITY_THRESHOLDS["FAIR"])
        scores = self.best_similarities([c.description for c in question.criteria], sentences)

        matched = tuple(c.id for c, s in zip(question.criteria, scores) if s >= threshold)
        certainties = [match_certainty(max(s, 0.0), threshold) for s in scores]
        return matched, round(100.0 * sum(certainties) / len(certainties), 1)

    async def grade(self, transcript: str, scheme: MarkScheme) -> list[GradedQuestion]:
        # model inference is CPU bound
        return await run_in_threadpool(self.grade_all, transcript, scheme)
