"""
Capability Classifier

Maps free-text task descriptions to capability tags using an ordered
keyword table. Capability sets are immutable, ordered and interned so that
subset checks and rotation-cursor keys are cheap and deterministic.
"""

from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import logging
import sys

logger = logging.getLogger(__name__)

DEFAULT_CAPABILITY = "text_generation"

# Priority order matters: tags are returned in table order.
DEFAULT_CAPABILITY_TABLE: List[Tuple[str, Tuple[str, ...]]] = [
    (
        "code_generation",
        (
            "code", "function", "script", "program", "implement", "refactor",
            "debug", "python", "javascript", "typescript", "sql query", "api endpoint",
            "unit test", "compile",
        ),
    ),
    (
        "data_analysis",
        (
            "analyze", "analyse", "analysis", "dataset", "statistics", "statistical",
            "csv", "spreadsheet", "trend", "correlation", "forecast", "metrics",
            "chart", "aggregate",
        ),
    ),
    (
        "reasoning",
        (
            "reason", "explain why", "deduce", "infer", "logic", "prove",
            "step by step", "solve", "puzzle", "math", "calculate",
        ),
    ),
    (
        "image_generation",
        (
            "image", "picture", "photo", "illustration", "draw", "logo",
            "render", "diagram", "sketch",
        ),
    ),
    (
        "translation",
        ("translate", "translation", "into english", "into french", "into spanish", "localize"),
    ),
    (
        "summarization",
        ("summarize", "summarise", "summary", "tl;dr", "condense", "key points"),
    ),
    (
        "text_generation",
        ("write", "draft", "compose", "essay", "story", "email", "blog", "article", "poem"),
    ),
]


class CapabilitySet:
    """
    Immutable, ordered set of capability tags.

    Equality and hashing ignore order; iteration keeps insertion order so
    downstream tie-breaking stays deterministic.
    """

    __slots__ = ("_tags", "_members")

    def __init__(self, tags: Iterable[str] = ()):
        ordered: List[str] = []
        seen = set()
        for tag in tags:
            if not isinstance(tag, str):
                raise TypeError(f"Capability tags must be strings, got {type(tag).__name__}")
            tag = sys.intern(tag.strip().lower())
            if tag and tag not in seen:
                seen.add(tag)
                ordered.append(tag)
        self._tags: Tuple[str, ...] = tuple(ordered)
        self._members = frozenset(ordered)

    @classmethod
    def of(cls, *tags: str) -> "CapabilitySet":
        return cls(tags)

    def issubset(self, other: "CapabilitySet") -> bool:
        return self._members <= CapabilitySet.coerce(other)._members

    def issuperset(self, other: "CapabilitySet") -> bool:
        return self._members >= CapabilitySet.coerce(other)._members

    @staticmethod
    def coerce(value) -> "CapabilitySet":
        """Accept a CapabilitySet or any iterable of tags"""
        if isinstance(value, CapabilitySet):
            return value
        if isinstance(value, str):
            return CapabilitySet([value])
        return CapabilitySet(value)

    def to_list(self) -> List[str]:
        return list(self._tags)

    def __contains__(self, tag: object) -> bool:
        return tag in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __bool__(self) -> bool:
        return bool(self._tags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CapabilitySet):
            return self._members == other._members
        if isinstance(other, (set, frozenset)):
            return self._members == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._members)

    def __repr__(self) -> str:
        return f"CapabilitySet({list(self._tags)!r})"


class CapabilityClassifier:
    """
    Pattern-based capability inference.

    For each capability in priority order, the tag is added when any of its
    trigger keywords appears (case-insensitively) in the task text. Unmatched
    or malformed input degrades to {text_generation}; infer() never raises.
    """

    def __init__(self, table: Optional[List[Tuple[str, Iterable[str]]]] = None):
        """
        Initialize classifier.

        Args:
            table: Ordered (capability, keywords) pairs. Defaults to the
                built-in table.
        """
        source = table if table is not None else DEFAULT_CAPABILITY_TABLE
        self.table: List[Tuple[str, Tuple[str, ...]]] = [
            (capability, tuple(k.lower() for k in keywords)) for capability, keywords in source
        ]

    def infer(self, text) -> CapabilitySet:
        """
        Infer capability tags from task text.

        Args:
            text: Free-text task description

        Returns:
            Non-empty capability set in table order
        """
        if not isinstance(text, str) or not text.strip():
            return CapabilitySet.of(DEFAULT_CAPABILITY)

        lowered = text.lower()
        matched = [
            capability
            for capability, keywords in self.table
            if any(keyword in lowered for keyword in keywords)
        ]

        if not matched:
            logger.debug("No capability keywords matched, using default")
            return CapabilitySet.of(DEFAULT_CAPABILITY)

        return CapabilitySet(matched)

    def keywords_for(self, capability: str) -> Tuple[str, ...]:
        for name, keywords in self.table:
            if name == capability:
                return keywords
        return ()

    def describe(self) -> Dict[str, List[str]]:
        return {capability: list(keywords) for capability, keywords in self.table}


# Global classifier instance
_global_classifier: Optional[CapabilityClassifier] = None


def get_classifier() -> CapabilityClassifier:
    """Get or create the global classifier"""
    global _global_classifier
    if _global_classifier is None:
        _global_classifier = CapabilityClassifier()
    return _global_classifier


def reset_classifier() -> None:
    """Reset global classifier (for testing)"""
    global _global_classifier
    _global_classifier = None


def infer_capabilities(text) -> CapabilitySet:
    """Infer capabilities with the global classifier"""
    return get_classifier().infer(text)
