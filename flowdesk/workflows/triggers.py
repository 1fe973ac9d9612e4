"""Natural-language trigger detection for workflow templates.

Matching is isolated behind :class:`TriggerDetector` so the scoring can be
tuned or replaced without touching the execution engine. The default
:class:`KeywordTriggerDetector` scores each active template from its
:class:`~flowdesk.workflows.models.TriggerRule`:

* every trigger phrase contained in the normalised message, and every
  trigger pattern that matches it, adds ``phrase`` weight;
* every distinct keyword present as a token adds ``keyword`` weight;
* when the base score is positive and a recent conversation topic mentions
  one of the rule's domain nouns, ``topic_boost`` is added once.

The highest score at or above ``min_score`` wins; ties are broken by catalog
declaration order.
"""

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from flowdesk.core.config import Settings
from flowdesk.workflows.catalog import WorkflowCatalog
from flowdesk.workflows.models import TriggerRule, WorkflowTemplate

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")
_WHITESPACE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text.lower()).strip()


@dataclass(frozen=True)
class TriggerWeights:
    """Scoring weights for keyword trigger detection."""

    phrase: float = 10.0
    keyword: float = 1.0
    topic_boost: float = 0.5
    min_score: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "TriggerWeights":
        """Build weights from application settings."""
        return cls(
            phrase=settings.WORKFLOW_TRIGGER_PHRASE_WEIGHT,
            keyword=settings.WORKFLOW_TRIGGER_KEYWORD_WEIGHT,
            topic_boost=settings.WORKFLOW_TRIGGER_TOPIC_BOOST,
            min_score=settings.WORKFLOW_TRIGGER_MIN_SCORE,
        )


@dataclass(frozen=True)
class TriggerMatch:
    """Score breakdown for one template against one message."""

    template: WorkflowTemplate
    score: float
    matched_phrases: tuple[str, ...] = ()
    matched_patterns: tuple[str, ...] = ()
    matched_keywords: tuple[str, ...] = ()
    topic_boosted: bool = False


class TriggerDetector(Protocol):
    """Selects the workflow template a user message asks for, if any."""

    def detect(
        self, message: str, recent_topics: list[str] | None = None
    ) -> WorkflowTemplate | None: ...


class KeywordTriggerDetector:
    """Weighted phrase/keyword scorer over a :class:`WorkflowCatalog`."""

    def __init__(self, catalog: WorkflowCatalog, weights: TriggerWeights | None = None) -> None:
        self._catalog = catalog
        self._weights = weights or TriggerWeights()

    @property
    def weights(self) -> TriggerWeights:
        return self._weights

    def _score(
        self,
        template: WorkflowTemplate,
        rule: TriggerRule,
        text: str,
        tokens: set[str],
        topics: list[str],
    ) -> TriggerMatch:
        w = self._weights

        phrases = tuple(p for p in rule.phrases if _normalize(p) and _normalize(p) in text)
        keywords = tuple(dict.fromkeys(k for k in rule.keywords if k.lower() in tokens))
        patterns = tuple(p for p in rule.patterns if re.search(p, text, re.IGNORECASE))
        score = (len(phrases) + len(patterns)) * w.phrase + len(keywords) * w.keyword

        boosted = False
        if score > 0 and rule.domains:
            domains = [d.lower() for d in rule.domains]
            boosted = any(domain in topic for topic in topics for domain in domains)
            if boosted:
                score += w.topic_boost

        return TriggerMatch(
            template=template,
            score=score,
            matched_phrases=phrases,
            matched_patterns=patterns,
            matched_keywords=keywords,
            topic_boosted=boosted,
        )

    def rank(self, message: str, recent_topics: list[str] | None = None) -> list[TriggerMatch]:
        """Score every active template that has a trigger rule.

        Args:
            message: The user's message.
            recent_topics: Recent conversation topics, most recent first.

        Returns:
            Matches with a positive score, best first; equal scores keep
            catalog order.
        """
        text = _normalize(message or "")
        if not text:
            return []
        tokens = set(_TOKEN.findall(text))
        topics = [t.lower() for t in (recent_topics or []) if t]

        matches: list[TriggerMatch] = []
        for template in self._catalog.list_active():
            rule = self._catalog.trigger_for(template.id)
            if rule is None:
                continue
            match = self._score(template, rule, text, tokens, topics)
            if match.score > 0:
                matches.append(match)

        # sorted() is stable, so ties stay in catalog order
        return sorted(matches, key=lambda m: m.score, reverse=True)

    def detect(
        self, message: str, recent_topics: list[str] | None = None
    ) -> WorkflowTemplate | None:
        """Return the best-scoring template at or above the threshold.

        Args:
            message: The user's message.
            recent_topics: Recent conversation topics, most recent first.

        Returns:
            The matched template, or ``None`` when nothing scores high enough.
        """
        ranked = self.rank(message, recent_topics)
        if not ranked or ranked[0].score < self._weights.min_score:
            logger.debug("No workflow trigger matched", extra={"candidates": len(ranked)})
            return None

        best = ranked[0]
        logger.info(
            "Workflow trigger matched: %s (score %.1f)",
            best.template.id,
            best.score,
            extra={
                "template_id": best.template.id,
                "score": best.score,
                "phrases": list(best.matched_phrases),
                "patterns": list(best.matched_patterns),
                "keywords": list(best.matched_keywords),
            },
        )
        return best.template
