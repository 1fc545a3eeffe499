"""
Metric and Template Registry

Scorers are registered explicitly as objects implementing
score(response, context) -> (score, passed). Registration validates the
name and interface; nothing is ever compiled or evaluated from strings.
Scoring logic owned by another process is plugged in through an adapter
object that calls out to it.
"""

from typing import Dict, List, Optional
import logging
import re
import threading

from .scorers import builtin_scorers
from .templates import BUILTIN_TEMPLATES, EvaluationTemplate

logger = logging.getLogger(__name__)

_METRIC_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


class MetricRegistry:
    """Registry of metric scorers and evaluation templates"""

    def __init__(self):
        self._scorers: Dict[str, object] = builtin_scorers()
        self._builtin = frozenset(self._scorers)
        self._templates: Dict[str, EvaluationTemplate] = dict(BUILTIN_TEMPLATES)
        self._lock = threading.Lock()

    def register(self, name: str, scorer, replace: bool = False) -> None:
        """
        Register a metric scorer.

        Args:
            name: Metric name (lowercase identifier)
            scorer: Object with a callable score(response, context)
            replace: Allow overwriting an existing metric

        Raises:
            ValueError: Invalid name, interface, or duplicate without replace
        """
        if not isinstance(name, str) or not _METRIC_NAME_RE.match(name):
            raise ValueError(f"Invalid metric name: {name!r}")
        if not callable(getattr(scorer, "score", None)):
            raise ValueError(f"Scorer for {name} must provide a callable score(response, context)")

        with self._lock:
            if name in self._scorers and not replace:
                kind = "built-in" if name in self._builtin else "registered"
                raise ValueError(f"Metric {name} is already {kind}; pass replace=True to override")
            self._scorers[name] = scorer

        logger.info(f"Registered metric scorer: {name}")

    def unregister(self, name: str) -> None:
        with self._lock:
            if name in self._builtin:
                raise ValueError(f"Cannot unregister built-in metric {name}")
            self._scorers.pop(name, None)

    def get_scorer(self, name: str):
        return self._scorers.get(name)

    def metric_names(self) -> List[str]:
        return sorted(self._scorers)

    def register_template(self, template: EvaluationTemplate, replace: bool = False) -> None:
        """
        Register an evaluation template.

        Raises:
            ValueError: Unknown metrics, or duplicate without replace
        """
        missing = [m for m in template.metrics if m not in self._scorers]
        if missing:
            raise ValueError(f"Template {template.name} references unknown metrics: {missing}")

        with self._lock:
            if template.name in self._templates and not replace:
                raise ValueError(f"Template {template.name} already exists")
            self._templates[template.name] = template

        logger.info(f"Registered evaluation template: {template.name}")

    def get_template(self, name: str) -> Optional[EvaluationTemplate]:
        return self._templates.get(name)

    def template_names(self) -> List[str]:
        return sorted(self._templates)
