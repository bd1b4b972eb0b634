import pytest

from supportdesk.conversations.models import IntentResult
from supportdesk.escalation import (
    ALWAYS_ESCALATE_INTENTS,
    evaluate_escalation,
    should_escalate,
)


CONFIDENT = IntentResult("balance_check", 0.7)


@pytest.mark.parametrize(
    "text",
    [
        "I want to talk to a human",
        "Get me your MANAGER",
        "Can I speak with a representative?",
        "I need a real person",
        "I want to complain about this",
        "agents please",
    ],
)
def test_explicit_requests_escalate(text):
    decision = evaluate_escalation(CONFIDENT, text)
    assert decision.should_escalate
    assert decision.reason == "explicit_request"


@pytest.mark.parametrize("intent", sorted(ALWAYS_ESCALATE_INTENTS))
def test_sensitive_intents_always_escalate(intent):
    decision = evaluate_escalation(IntentResult(intent, 0.95), "something happened")
    assert decision.should_escalate
    assert decision.reason == "sensitive_intent"


def test_low_confidence_escalates():
    decision = evaluate_escalation(IntentResult("general_inquiry", 0.3), "hmm")
    assert decision.should_escalate
    assert decision.reason == "low_confidence"


def test_threshold_is_configurable():
    weak = IntentResult("greeting", 0.6)
    assert not should_escalate(weak, "hello")
    assert should_escalate(weak, "hello", threshold=0.65)


def test_confident_routine_request_stays_automated():
    decision = evaluate_escalation(CONFIDENT, "What is my balance?")
    assert not decision.should_escalate
    assert decision.reason is None


def test_trigger_words_match_whole_words_only():
    assert not should_escalate(CONFIDENT, "my humanitarian donation balance")


def test_policy_is_pure():
    first = evaluate_escalation(CONFIDENT, "talk to a human")
    second = evaluate_escalation(CONFIDENT, "talk to a human")
    assert first == second
