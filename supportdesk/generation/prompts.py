"""Prompt construction for industry-aware customer support replies."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from langdetect import DetectorFactory, LangDetectException, detect

from ..conversations import schemas
from ..conversations.models import Industry, IntentResult, Sender
from ..errors import ConfigurationError

DetectorFactory.seed = 0

CUSTOMER_MESSAGE_LABEL = "Customer message:"

PREAMBLE = (
    "You are a helpful customer service AI for a {industry} company.\n"
    "Provide a helpful, professional response. Be concise but complete.\n"
    "If you need more information to help the customer, ask clarifying questions.\n"
    "If the request requires actions you cannot perform (like actual transactions), "
    "explain that a representative will assist."
)

INDUSTRY_GUIDELINES: Mapping[Industry, str] = {
    Industry.MOBILE: (
        "Guidelines for mobile operators:\n"
        "- Help with balance inquiries, bundle purchases and data plans\n"
        "- Provide network troubleshooting steps\n"
        "- Explain how to check balances (e.g. dial *123#)\n"
        "- Offer bundle recommendations based on usage patterns"
    ),
    Industry.BANKING: (
        "Guidelines for banking:\n"
        "- Never share sensitive account details\n"
        "- Guide users on how to check balances via app or USSD\n"
        "- Explain common banking procedures\n"
        "- For fraud or security issues, hand over to a human immediately"
    ),
    Industry.MICROFINANCE: (
        "Guidelines for microfinance:\n"
        "- Explain loan eligibility criteria\n"
        "- Provide general information about loan products\n"
        "- Guide on repayment methods\n"
        "- Calculate estimated repayments if asked"
    ),
    Industry.INSURANCE: (
        "Guidelines for insurance:\n"
        "- Explain policy coverage and benefits\n"
        "- Guide through the claims process\n"
        "- Provide quote estimates based on general criteria\n"
        "- Clarify premium payment options"
    ),
    Industry.TELEVISION: (
        "Guidelines for TV subscriptions:\n"
        "- Help with decoder issues and troubleshooting\n"
        "- Explain package features and pricing\n"
        "- Guide through the activation process\n"
        "- Provide signal troubleshooting steps"
    ),
}

_SPEAKER = {
    Sender.CUSTOMER: "Customer",
    Sender.AI: "Assistant",
    Sender.AGENT: "Agent",
    Sender.SYSTEM: "System",
}


def validate_guidelines(table: Mapping[Industry, str]) -> None:
    """Fail fast when any supported industry lacks a guideline entry."""

    missing = [i.value for i in Industry if not (table.get(i) or "").strip()]
    if missing:
        raise ConfigurationError(
            f"Missing prompt guidelines for industries: {', '.join(missing)}"
        )


validate_guidelines(INDUSTRY_GUIDELINES)


class PromptBuilder:
    """Compose bounded prompts from guidelines, history and the new message."""

    def __init__(
        self,
        *,
        max_chars: int = 6000,
        guidelines: Mapping[Industry, str] | None = None,
        language: str | None = None,
        detect_language: bool = True,
    ) -> None:
        table = dict(INDUSTRY_GUIDELINES)
        if guidelines:
            table.update(guidelines)
        validate_guidelines(table)
        self._guidelines = table
        self._max_chars = max_chars
        self._language = language
        self._detect_language = detect_language

    def build(
        self,
        message: str,
        industry: Industry | str,
        intent: IntentResult | str | None,
        history: Sequence[schemas.Message] = (),
    ) -> str:
        industry = Industry.parse(industry)
        head = [PREAMBLE.format(industry=industry.value), self._guidelines[industry]]
        intent_line = self._intent_line(intent)
        if intent_line:
            head.append(intent_line)
        tail = [self._language_instruction(message), f"{CUSTOMER_MESSAGE_LABEL} {message}"]

        lines = [
            f"{_SPEAKER.get(m.sender, 'Customer')}: {m.content}" for m in history
        ]
        prompt = self._compose(head, lines, tail)
        while lines and len(prompt) > self._max_chars:
            lines.pop(0)
            prompt = self._compose(head, lines, tail)
        return prompt

    @staticmethod
    def _compose(head: list[str], lines: list[str], tail: list[str]) -> str:
        sections = list(head)
        if lines:
            sections.append("Conversation so far:\n" + "\n".join(lines))
        sections.extend(tail)
        return "\n\n".join(sections)

    @staticmethod
    def _intent_line(intent: IntentResult | str | None) -> str | None:
        if intent is None:
            return None
        if isinstance(intent, IntentResult):
            return (
                f"Detected intent: {intent.intent} "
                f"(confidence: {round(intent.confidence * 100)}%)"
            )
        return f"Detected intent: {intent}"

    def _language_instruction(self, message: str) -> str:
        lang = self._language
        if not lang and self._detect_language and len(message.split()) >= 3:
            try:
                lang = detect(message)
            except LangDetectException:
                lang = None
        if lang:
            return f"Reply in {lang}."
        return "Reply in the same language as the customer."
