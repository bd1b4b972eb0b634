import pytest

from supportdesk.conversations.models import Industry
from supportdesk.intent_rules import known_intents
from supportdesk.nlp import (
    DEFAULT_CONFIDENCE,
    DEFAULT_INTENT,
    GenerativeIntentClassifier,
    RuleBasedIntentClassifier,
)


@pytest.fixture
def classifier():
    return RuleBasedIntentClassifier()


def test_mobile_balance_question(classifier):
    result = classifier.detect_intent("What is my balance?", Industry.MOBILE)
    assert result.intent == "balance_check"
    assert result.confidence >= 0.6
    assert result.matched_pattern.lower() == "balance"


def test_industry_scopes_the_rule_set(classifier):
    text = "I want to apply for a loan"
    assert classifier.detect_intent(text, "microfinance").intent == "loan_application"
    assert classifier.detect_intent(text, "banking").intent == "loan_inquiry"
    assert classifier.detect_intent(text, "television").intent == DEFAULT_INTENT


def test_unmatched_text_falls_back_to_default(classifier):
    result = classifier.detect_intent("xyzzy plugh", Industry.INSURANCE)
    assert result.intent == DEFAULT_INTENT
    assert result.confidence == DEFAULT_CONFIDENCE
    assert result.matched_pattern is None


def test_additional_matches_raise_confidence(classifier):
    single = classifier.detect_intent("I want a bundle", Industry.MOBILE)
    double = classifier.detect_intent("I want to buy data, which bundle?", Industry.MOBILE)
    assert single.intent == double.intent == "bundle_purchase"
    assert double.confidence > single.confidence
    assert double.confidence <= 0.95


def test_sensitive_banking_intents(classifier):
    assert classifier.detect_intent("There is fraud on my account", "bank").intent == "fraud_report"
    assert (
        classifier.detect_intent("My account was hacked", Industry.BANKING).intent
        == "security_breach"
    )


def test_common_rules_apply_to_every_industry(classifier):
    for industry in Industry:
        assert classifier.detect_intent("hello there", industry).intent == "greeting"


def test_classification_is_deterministic(classifier):
    text = "my sim is locked and I need the puk"
    results = {classifier.detect_intent(text, Industry.MOBILE) for _ in range(5)}
    assert len(results) == 1


def test_known_intents_are_unique():
    intents = known_intents(Industry.BANKING)
    assert len(intents) == len(set(intents))
    assert "greeting" in intents


class _CannedBackend:
    name = "canned"

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def complete(self, prompt, history=(), params=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply

    async def stream(self, prompt, history=(), params=None):  # pragma: no cover - unused
        yield self.reply


def test_generative_classifier_uses_backend_json():
    backend = _CannedBackend('Sure: {"intent": "transfer_money", "confidence": 0.82}')
    result = GenerativeIntentClassifier(backend).detect_intent("send cash", Industry.BANKING)
    assert result.intent == "transfer_money"
    assert result.confidence == pytest.approx(0.82)
    assert "transfer_money" in backend.prompts[0]


def test_generative_classifier_falls_back_on_errors():
    for backend in (
        _CannedBackend(error=RuntimeError("down")),
        _CannedBackend("no json here"),
        _CannedBackend('{"intent": "made_up", "confidence": 0.9}'),
    ):
        result = GenerativeIntentClassifier(backend).detect_intent(
            "What is my balance?", Industry.MOBILE
        )
        assert result.intent == "balance_check"


def test_generative_classifier_clamps_confidence():
    backend = _CannedBackend('{"intent": "greeting", "confidence": 3}')
    result = GenerativeIntentClassifier(backend).detect_intent("hi", Industry.MOBILE)
    assert result.confidence == 1.0


def test_unknown_industry_is_rejected(classifier):
    from supportdesk.errors import ValidationError

    with pytest.raises(ValidationError):
        classifier.detect_intent("hello", "farming")
