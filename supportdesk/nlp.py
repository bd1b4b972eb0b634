"""Intent classification for inbound customer messages."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from .conversations.models import Industry, IntentResult
from .generation.backends import TextGenerator
from .intent_rules import known_intents, rules_for

logger = logging.getLogger(__name__)

DEFAULT_INTENT = "general_inquiry"
DEFAULT_CONFIDENCE = 0.3
_MAX_CONFIDENCE = 0.95
_EXTRA_MATCH_BONUS = 0.1

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class IntentClassifier(Protocol):
    def detect_intent(self, text: str, industry: Industry | str) -> IntentResult: ...


@dataclass
class _Candidate:
    intent: str
    score: float
    longest: str


class RuleBasedIntentClassifier:
    """Deterministic keyword/pattern classifier scoped by industry.

    Each matching rule scores its base confidence plus a small bonus for every
    additional matching pattern. The highest score wins; ties go to the rule
    whose matched text is longest.
    """

    def detect_intent(self, text: str, industry: Industry | str) -> IntentResult:
        industry = Industry.parse(industry)
        text = text or ""
        best: Optional[_Candidate] = None
        for rule in rules_for(industry):
            found = (pattern.search(text) for pattern in rule.patterns)
            matches = [m.group(0) for m in found if m]
            if not matches:
                continue
            score = min(
                rule.base_confidence + _EXTRA_MATCH_BONUS * (len(matches) - 1),
                _MAX_CONFIDENCE,
            )
            candidate = _Candidate(rule.intent, round(score, 4), max(matches, key=len))
            if best is None or (candidate.score, len(candidate.longest)) > (
                best.score,
                len(best.longest),
            ):
                best = candidate
        if best is None:
            return IntentResult(DEFAULT_INTENT, DEFAULT_CONFIDENCE)
        return IntentResult(best.intent, best.score, best.longest)


class GenerativeIntentClassifier:
    """Ask a text generator for the intent, falling back to the rule set."""

    def __init__(
        self,
        backend: TextGenerator,
        fallback: Optional[IntentClassifier] = None,
    ) -> None:
        self._backend = backend
        self._fallback = fallback or RuleBasedIntentClassifier()

    def detect_intent(self, text: str, industry: Industry | str) -> IntentResult:
        industry = Industry.parse(industry)
        valid = known_intents(industry)
        prompt = (
            f"You are an intent classifier for a {industry.value} customer service AI.\n\n"
            f"Valid intents: {', '.join(valid)}, {DEFAULT_INTENT}\n\n"
            f'Customer message: "{text}"\n\n'
            'Return only JSON: {"intent": "intent_name", "confidence": 0.0-1.0}'
        )
        try:
            raw = self._backend.complete(prompt, (), {"temperature": 0})
            match = _JSON_OBJECT.search(raw or "")
            if not match:
                raise ValueError("no JSON object in classifier response")
            payload = json.loads(match.group(0))
            intent = str(payload["intent"])
            confidence = float(payload["confidence"])
        except Exception as exc:
            logger.warning("Generative intent classification failed: %s", exc)
            return self._fallback.detect_intent(text, industry)
        if intent not in valid and intent != DEFAULT_INTENT:
            logger.info("Classifier returned unknown intent %r; using rules", intent)
            return self._fallback.detect_intent(text, industry)
        return IntentResult(intent, max(0.0, min(confidence, 1.0)))
