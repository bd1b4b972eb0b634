"""Industry-scoped keyword rules used by the rule-based intent classifier."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Tuple

from .conversations.models import Industry


@dataclass(frozen=True)
class IntentRule:
    intent: str
    base_confidence: float
    patterns: Tuple[re.Pattern[str], ...]


def _rule(intent: str, base_confidence: float, *patterns: str) -> IntentRule:
    return IntentRule(
        intent=intent,
        base_confidence=base_confidence,
        patterns=tuple(re.compile(p, re.I) for p in patterns),
    )


_FRAUD = (
    r"\bfraud\w*",
    r"\bunauthori[sz]ed (?:transaction|charge|payment|withdrawal)s?\b",
    r"\bscam(?:med|mer)?\b",
)
_IDENTITY_THEFT = (
    r"\bidentity theft\b",
    r"\bstole my identity\b",
    r"\bsomeone (?:is )?using my (?:identity|name|id)\b",
)

COMMON_RULES: Tuple[IntentRule, ...] = (
    _rule(
        "greeting",
        0.6,
        r"^\s*(?:hi|hello|hey|good (?:morning|afternoon|evening))\b",
    ),
    _rule("thanks", 0.6, r"\bthank(?:s| you)\b", r"\bappreciate it\b"),
)

INDUSTRY_RULES: Dict[Industry, Tuple[IntentRule, ...]] = {
    Industry.MOBILE: (
        _rule(
            "balance_check",
            0.7,
            r"\bbalance\b",
            r"\bairtime\b",
            r"\bcredit left\b",
            r"\bremaining (?:data|airtime|credit)\b",
            r"\bhow much (?:airtime|data|credit)\b",
        ),
        _rule(
            "bundle_purchase",
            0.65,
            r"\bbundles?\b",
            r"\bdata (?:plan|package)s?\b",
            r"\bbuy (?:data|airtime)\b",
            r"\bpurchase\b",
        ),
        _rule(
            "network_issue",
            0.65,
            r"\bnetwork\b",
            r"\bsignal\b",
            r"\bno (?:service|coverage)\b",
            r"\bslow (?:internet|data)\b",
            r"\bcalls? (?:drop|dropping|failing)\b",
        ),
        _rule(
            "sim_registration",
            0.7,
            r"\bsim (?:registration|register)\b",
            r"\bregister (?:my )?sim\b",
        ),
        _rule("puk_request", 0.75, r"\bpuk\b", r"\bsim (?:is )?(?:locked|blocked)\b"),
        _rule(
            "sim_swap_fraud",
            0.8,
            r"\bsim swap\b",
            r"\bsomeone (?:took|stole|swapped) my (?:number|sim)\b",
        ),
        _rule(
            "device_support",
            0.6,
            r"\b(?:phone|handset|device) (?:settings|setup|configuration)\b",
            r"\bapn\b",
        ),
    ),
    Industry.BANKING: (
        _rule(
            "balance_check",
            0.7,
            r"\bbalance\b",
            r"\bhow much (?:money|funds)\b",
            r"\baccount funds\b",
        ),
        _rule("transfer_money", 0.65, r"\btransfer\b", r"\bsend money\b", r"\bwire\b"),
        _rule("loan_inquiry", 0.6, r"\bloans?\b", r"\bborrow\b", r"\binterest rates?\b"),
        _rule(
            "statement_request",
            0.7,
            r"\bstatements?\b",
            r"\btransaction history\b",
        ),
        _rule(
            "card_issue",
            0.65,
            r"\b(?:atm|debit|credit) card\b",
            r"\bcard (?:is )?(?:blocked|declined|stuck)\b",
            r"\batm\b",
        ),
        _rule(
            "card_lost_stolen",
            0.8,
            r"\b(?:lost|stolen) (?:my )?card\b",
            r"\bcard (?:was |is |got )?(?:lost|stolen)\b",
        ),
        _rule("fraud_report", 0.85, *_FRAUD),
        _rule(
            "security_breach",
            0.85,
            r"\b(?:hacked|compromised)\b",
            r"\bphishing\b",
        ),
        _rule("identity_theft", 0.85, *_IDENTITY_THEFT),
    ),
    Industry.MICROFINANCE: (
        _rule(
            "loan_application",
            0.7,
            r"\bapply (?:for )?(?:a )?loan\b",
            r"\bloan application\b",
            r"\bneed a loan\b",
        ),
        _rule(
            "loan_status",
            0.7,
            r"\bloan status\b",
            r"\b(?:application|loan) (?:is )?(?:approved|pending|rejected)\b",
            r"\bstatus of my (?:loan|application)\b",
        ),
        _rule(
            "repayment_inquiry",
            0.65,
            r"\brepay\w*",
            r"\binstal+ments?\b",
            r"\bdue date\b",
        ),
        _rule(
            "loan_balance",
            0.65,
            r"\bbalance\b",
            r"\bhow much (?:do )?i owe\b",
            r"\boutstanding\b",
        ),
        _rule(
            "eligibility_check",
            0.6,
            r"\beligib\w*",
            r"\bqualify\b",
            r"\brequirements?\b",
        ),
        _rule("fraud_report", 0.85, *_FRAUD),
        _rule("identity_theft", 0.85, *_IDENTITY_THEFT),
    ),
    Industry.INSURANCE: (
        _rule(
            "quote_request",
            0.65,
            r"\bquotes?\b",
            r"\bhow much (?:is|does|would) (?:the |a )?(?:cover|policy|premium)\b",
        ),
        _rule("policy_inquiry", 0.6, r"\bpolicy\b", r"\bcoverage\b", r"\bcovered\b"),
        _rule("claims_submission", 0.75, r"\bclaims?\b", r"\baccident\b", r"\bdamage\w*"),
        _rule("premium_payment", 0.65, r"\bpremiums?\b", r"\bpay (?:my )?premium\b"),
        _rule("policy_renewal", 0.7, r"\brenew\w*", r"\bexpir\w*"),
        _rule("beneficiary_update", 0.65, r"\bbeneficiar\w*"),
        _rule("fraud_report", 0.85, r"\bfraud\w*", r"\bfake claims?\b"),
    ),
    Industry.TELEVISION: (
        _rule(
            "subscription_status",
            0.65,
            r"\bsubscription\b",
            r"\bpackage\b",
            r"\bplan\b",
        ),
        _rule(
            "payment_confirmation",
            0.65,
            r"\bpaid\b",
            r"\bpayment\b",
            r"\brecharge\b",
            r"\btop ?up\b",
        ),
        _rule(
            "decoder_troubleshooting",
            0.7,
            r"\bdecoder\b",
            r"\bremote\b",
            r"\berror (?:code )?e?\d+\b",
        ),
        _rule("signal_issue", 0.7, r"\bno signal\b", r"\bsignal\b", r"\bdish\b", r"\bpixelat\w*"),
        _rule("package_upgrade", 0.65, r"\bupgrade\b", r"\bchange (?:my )?package\b"),
        _rule("channel_inquiry", 0.6, r"\bchannels?\b", r"\bshows?\b"),
    ),
}


def rules_for(industry: Industry) -> Tuple[IntentRule, ...]:
    """Return the industry rules followed by the cross-industry ones."""

    return INDUSTRY_RULES[industry] + COMMON_RULES


def known_intents(industry: Industry) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for rule in rules_for(industry):
        seen.setdefault(rule.intent, None)
    return tuple(seen)
