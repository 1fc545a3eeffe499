"""
Built-in Metric Scorers

Lexical heuristics that satisfy the scoring contract: every scorer maps a
(response, context) pair to a score in [0, 1] plus a pass flag, or to
(None, None) when the inputs it needs were not supplied.
"""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging
import re

import numpy as np

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")
_SENTENCE_RE = re.compile(r"[^.!?\n]+[.!?]*")

STOPWORDS = frozenset(
    """
    a an the and or but if then else of to in on at by for with from as is are was were be been
    being this that these those it its it's i you he she we they them his her our your their
    what which who whom whose when where why how do does did done not no yes so than too very
    can could should would will shall may might must have has had having about into over under
    again further once here there all any both each few more most other some such only own same
    just also me my mine us
    """.split()
)


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall(text.lower()) if text else []


def content_tokens(text: str) -> List[str]:
    return [t for t in tokenize(text) if t not in STOPWORDS]


def split_sentences(text: str) -> List[str]:
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def normalize_text(text: str) -> str:
    return " ".join(tokenize(text))


def clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class ScoringContext:
    """Inputs available to a scorer besides the response itself"""

    prompt: str = ""
    expected_output: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def grounding_docs(self) -> Optional[List[str]]:
        docs = self.context.get("grounding_docs")
        if docs is None:
            return None
        if isinstance(docs, str):
            return [docs]
        return [str(d) for d in docs]

    def topic_text(self) -> str:
        """Prompt plus any declared topical context"""
        parts = [self.prompt or ""]
        for key in ("topic", "description", "domain"):
            value = self.context.get(key)
            if isinstance(value, str):
                parts.append(value)
        keywords = self.context.get("keywords")
        if isinstance(keywords, (list, tuple)):
            parts.extend(str(k) for k in keywords)
        return " ".join(parts)


class MetricScorer(ABC):
    """
    Scoring interface: score(response, context) -> (score, passed).

    Subclasses implement compute(); None means "not applicable" and the
    engine skips the metric.
    """

    name: str = ""
    threshold: float = 0.5

    @abstractmethod
    def compute(self, response: str, ctx: ScoringContext) -> Optional[float]:
        ...

    def score(self, response: str, ctx: ScoringContext) -> Tuple[Optional[float], Optional[bool]]:
        value = self.compute(response, ctx)
        if value is None:
            return None, None
        value = clamp(value)
        return value, value >= self.threshold


class AccuracyScorer(MetricScorer):
    """
    Agreement with the expected output.

    An expected answer appearing verbatim (on word boundaries) in the
    response scores 1.0; otherwise token-level F1 over content words.
    """

    name = "accuracy"
    threshold = 0.7

    def compute(self, response: str, ctx: ScoringContext) -> Optional[float]:
        if ctx.expected_output is None or not str(ctx.expected_output).strip():
            return None

        expected = normalize_text(str(ctx.expected_output))
        actual = normalize_text(response)
        if not actual:
            return 0.0

        if expected and re.search(r"\b" + re.escape(expected) + r"\b", actual):
            return 1.0

        return self._token_f1(str(ctx.expected_output), response)

    @staticmethod
    def _token_f1(expected: str, actual: str) -> float:
        expected_tokens = content_tokens(expected) or tokenize(expected)
        actual_tokens = content_tokens(actual) or tokenize(actual)
        if not expected_tokens or not actual_tokens:
            return 0.0

        common = Counter(expected_tokens) & Counter(actual_tokens)
        overlap = sum(common.values())
        if overlap == 0:
            return 0.0

        precision = overlap / len(actual_tokens)
        recall = overlap / len(expected_tokens)
        return 2 * precision * recall / (precision + recall)


class RelevanceScorer(MetricScorer):
    """
    Topical overlap between the response and the prompt plus declared context.

    Mean of term-frequency cosine similarity and the fraction of reference
    terms the response covers.
    """

    name = "relevance"
    threshold = 0.6

    def compute(self, response: str, ctx: ScoringContext) -> Optional[float]:
        reference = content_tokens(ctx.topic_text())
        if not reference:
            return None

        answer = content_tokens(response)
        if not answer:
            return 0.0

        vocabulary = sorted(set(reference) | set(answer))
        index = {term: i for i, term in enumerate(vocabulary)}

        ref_vec = np.zeros(len(vocabulary))
        ans_vec = np.zeros(len(vocabulary))
        for term in reference:
            ref_vec[index[term]] += 1
        for term in answer:
            ans_vec[index[term]] += 1

        cosine = float(ref_vec @ ans_vec / (np.linalg.norm(ref_vec) * np.linalg.norm(ans_vec)))
        reference_terms = set(reference)
        coverage = len(reference_terms & set(answer)) / len(reference_terms)

        return 0.5 * cosine + 0.5 * coverage


class CoherenceScorer(MetricScorer):
    """
    Internal consistency heuristics.

    Averages four signals: terminal punctuation, absence of repeated
    sentences, lexical diversity and sentence length in a readable range.
    """

    name = "coherence"
    threshold = 0.6

    def __init__(self, min_sentence_words: int = 3, max_sentence_words: int = 40):
        self.min_sentence_words = min_sentence_words
        self.max_sentence_words = max_sentence_words

    def compute(self, response: str, ctx: ScoringContext) -> Optional[float]:
        tokens = tokenize(response)
        if not tokens:
            return 0.0

        sentences = split_sentences(response)
        stripped = response.strip()

        structure = 1.0 if stripped[-1] in ".!?" else 0.7

        normalized = [normalize_text(s) for s in sentences if normalize_text(s)]
        repetition = len(set(normalized)) / len(normalized) if normalized else 0.0

        ratio = len(set(tokens)) / len(tokens)
        diversity = min(1.0, ratio / 0.5)

        lengths = [len(tokenize(s)) for s in sentences] or [len(tokens)]
        mean_length = float(np.mean(lengths))
        if mean_length < self.min_sentence_words:
            length_score = mean_length / self.min_sentence_words
        elif mean_length > self.max_sentence_words:
            length_score = self.max_sentence_words / mean_length
        else:
            length_score = 1.0

        return float(np.mean([structure, repetition, diversity, length_score]))


class HallucinationScorer(MetricScorer):
    """
    Unsupported-claim detection against grounding documents.

    Each sentence is a claim; a claim is supported when enough of its
    content words occur in the grounding documents. Score is the supported
    fraction, so 1.0 means fully grounded.
    """

    name = "hallucination"
    threshold = 0.7

    def __init__(self, support_threshold: float = 0.6):
        self.support_threshold = support_threshold

    def compute(self, response: str, ctx: ScoringContext) -> Optional[float]:
        docs = ctx.grounding_docs()
        if docs is None:
            return None

        vocabulary = set()
        for doc in docs:
            vocabulary.update(content_tokens(doc))

        claims = [content_tokens(s) for s in split_sentences(response)]
        claims = [c for c in claims if c]
        if not claims:
            return 1.0

        supported = 0
        for claim in claims:
            grounded = sum(1 for term in claim if term in vocabulary) / len(claim)
            if grounded >= self.support_threshold:
                supported += 1

        return supported / len(claims)


def builtin_scorers() -> Dict[str, MetricScorer]:
    return {
        scorer.name: scorer
        for scorer in (AccuracyScorer(), RelevanceScorer(), CoherenceScorer(), HallucinationScorer())
    }
