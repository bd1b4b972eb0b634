"""Escalation policy deciding when a human takes over a conversation.

Both functions are pure: no I/O, no clock, no shared state.
"""
from __future__ import annotations

import re

from .conversations.models import EscalationDecision, IntentResult

DEFAULT_CONFIDENCE_THRESHOLD = 0.4

ALWAYS_ESCALATE_INTENTS = frozenset(
    {"fraud_report", "security_breach", "identity_theft", "sim_swap_fraud"}
)

_EXPLICIT_TRIGGERS = re.compile(
    r"\b(?:agents?|humans?|manager|supervisor|representative|real person|complain\w*)\b",
    re.I,
)


def evaluate_escalation(
    intent_result: IntentResult,
    raw_text: str,
    *,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> EscalationDecision:
    """Return the escalation decision together with its reason."""

    if _EXPLICIT_TRIGGERS.search(raw_text or ""):
        return EscalationDecision(True, "explicit_request")
    if intent_result.intent in ALWAYS_ESCALATE_INTENTS:
        return EscalationDecision(True, "sensitive_intent")
    if intent_result.confidence < threshold:
        return EscalationDecision(True, "low_confidence")
    return EscalationDecision(False)


def should_escalate(
    intent_result: IntentResult,
    raw_text: str,
    *,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> bool:
    return evaluate_escalation(intent_result, raw_text, threshold=threshold).should_escalate
