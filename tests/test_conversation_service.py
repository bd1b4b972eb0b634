import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time, timezone

import pytest

from conftest import ACME, FIRST_BANK, ScriptedGenerator
from supportdesk.config import Settings
from supportdesk.conversations.models import (
    Channel,
    ConversationStatus,
    InboundMessage,
    Industry,
    Sender,
)
from supportdesk.conversations.service import APOLOGY_TEXT, GENERATION_FAILED, ConversationService
from supportdesk.conversations.store import ConversationStore
from supportdesk.errors import NotFoundError, TenantMismatchError
from supportdesk.generation import ResponseGenerator
from supportdesk.nlp import RuleBasedIntentClassifier
from supportdesk.tenants import BusinessHours, TenantConfig

HANDOFF = "A person will take it from here."
MONDAY_EVENING = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)
MONDAY_MORNING = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _service(generator=None, *, store=None, clock=None, **settings):
    settings = Settings(generation_timeout=2.0, stream_stall_timeout=2.0).with_overrides(**settings)
    store = store or ConversationStore()
    generator = generator or ScriptedGenerator()
    return ConversationService(
        store,
        ResponseGenerator(generator, settings=settings),
        settings=settings,
        clock=clock,
    )


def _sms(text, *, tenant=ACME, phone="+15551234567", conversation_id=None):
    return InboundMessage(
        channel=Channel.SMS,
        customer_id=f"{tenant.company_id}:customer_{phone.lstrip('+')}",
        text=text,
        industry=tenant.industry,
        company_id=tenant.company_id,
        conversation_id=conversation_id,
        sender_address=phone,
    )


async def _drain(events):
    return [event async for event in events]


def test_process_turn_stores_customer_and_ai_messages():
    generator = ScriptedGenerator(reply="Dial *123# to check.")
    service = _service(generator)
    result = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)

    assert result.text == "Dial *123# to check."
    assert result.should_respond and not result.escalated
    assert result.intent.intent == "balance_check"

    convo = service.store.get_conversation(result.conversation_id)
    assert [(m.sender, m.content) for m in convo.messages] == [
        (Sender.CUSTOMER, "What is my balance?"),
        (Sender.AI, "Dial *123# to check."),
    ]
    assert convo.messages[0].intent == "balance_check"
    assert convo.messages[1].id == result.message_id
    assert convo.context.intent == "balance_check"
    assert convo.context.custom_data["sender_address"] == "+15551234567"
    assert convo.company_id == "acme-mobile"
    assert "Customer message: What is my balance?" in generator.prompts[0]


def test_history_precedes_the_new_message_in_the_prompt():
    generator = ScriptedGenerator()
    service = _service(generator)
    service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    service.process_turn(_sms("How do I buy a data bundle?"), handoff_text=HANDOFF, tenant=ACME)
    second = generator.prompts[1]
    assert "Customer: What is my balance?" in second
    assert second.count("How do I buy a data bundle?") == 1


def test_format_reply_shapes_stored_text():
    service = _service(ScriptedGenerator(reply="x" * 50))
    result = service.process_turn(
        _sms("What is my balance?"),
        handoff_text=HANDOFF,
        tenant=ACME,
        format_reply=lambda text: text[:10],
    )
    stored = service.store.get_history(result.conversation_id)[-1]
    assert result.text == stored.content == "x" * 10


def test_explicit_request_hands_off_without_generation():
    generator = ScriptedGenerator()
    service = _service(generator)
    result = service.process_turn(
        _sms("I want to talk to a human"), handoff_text=HANDOFF, tenant=ACME
    )
    assert result.escalated
    assert result.text == HANDOFF
    assert generator.prompts == []

    convo = service.store.get_conversation(result.conversation_id)
    assert convo.status == ConversationStatus.ESCALATED
    handoff = convo.messages[-1]
    assert handoff.sender == Sender.SYSTEM
    assert handoff.metadata == {"handoff": True, "reason": "explicit_request"}
    events = service.store.escalation_queue.pending()
    assert [e.reason for e in events] == ["explicit_request"]


def test_follow_up_after_escalation_waits_for_agent():
    generator = ScriptedGenerator()
    service = _service(generator)
    first = service.process_turn(_sms("Get me a manager"), handoff_text=HANDOFF, tenant=ACME)
    second = service.process_turn(_sms("Hello? Anyone?"), handoff_text=HANDOFF, tenant=ACME)

    assert second.conversation_id == first.conversation_id
    assert not second.should_respond
    assert second.text == ""
    assert generator.prompts == []
    history = service.store.get_history(first.conversation_id)
    assert history[-1].sender == Sender.CUSTOMER
    assert len(service.store.escalation_queue.pending()) == 1


def test_low_confidence_escalates():
    service = _service()
    result = service.process_turn(_sms("xyzzy plugh"), handoff_text=HANDOFF, tenant=ACME)
    assert result.escalated
    assert service.store.escalation_queue.pending()[0].reason == "low_confidence"


def test_generation_failures_escalate_after_threshold():
    generator = ScriptedGenerator(fail=True)
    service = _service(generator, max_generation_failures=2)

    first = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    assert first.failed and not first.escalated
    assert first.text == APOLOGY_TEXT
    apology = service.store.get_history(first.conversation_id)[-1]
    assert apology.sender == Sender.AI
    assert apology.metadata == {"error": GENERATION_FAILED}

    second = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    assert second.failed and second.escalated
    convo = service.store.get_conversation(first.conversation_id)
    assert convo.status == ConversationStatus.ESCALATED
    assert service.store.escalation_queue.pending()[0].reason == "generation_failures"


def test_successful_reply_resets_failure_counter():
    generator = ScriptedGenerator(fail=True)
    service = _service(generator, max_generation_failures=2)
    result = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    assert service.store.get_conversation(result.conversation_id).generation_failures == 1

    generator.fail = False
    service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    assert service.store.get_conversation(result.conversation_id).generation_failures == 0


def test_reply_is_dropped_when_agent_takes_over_mid_generation():
    store = ConversationStore()

    class TakeoverGenerator(ScriptedGenerator):
        def complete(self, prompt, history=(), params=None):
            conversation_id = store.find_active("acme-mobile:customer_15551234567", Channel.SMS)
            store.escalate(conversation_id, reason="agent_request", agent_id="agent-1")
            return super().complete(prompt, history, params)

    service = _service(TakeoverGenerator(), store=store)
    result = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    assert not result.should_respond
    assert [m.sender for m in store.get_history(result.conversation_id)] == [Sender.CUSTOMER]


def test_offline_tenant_gets_offline_notice():
    hours = BusinessHours(timezone="UTC", schedule={"monday": (time(9), time(17))})
    tenant = TenantConfig(
        company_id="acme-mobile",
        industry=Industry.MOBILE,
        business_hours=hours,
        offline_message="Closed for the night.",
    )
    generator = ScriptedGenerator()

    closed = _service(generator, clock=lambda: MONDAY_EVENING)
    result = closed.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=tenant)
    assert result.text == "Closed for the night."
    assert generator.prompts == []
    notice = closed.store.get_history(result.conversation_id)[-1]
    assert notice.sender == Sender.SYSTEM and notice.metadata == {"offline": True}

    opened = _service(generator, clock=lambda: MONDAY_MORNING)
    result = opened.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=tenant)
    assert result.text == generator.reply


def test_conversation_of_another_tenant_is_rejected():
    service = _service()
    first = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    inbound = _sms("What is my balance?", conversation_id=first.conversation_id)
    with pytest.raises(TenantMismatchError):
        service.process_turn(inbound, handoff_text=HANDOFF, tenant=FIRST_BANK)


def test_conversation_id_of_another_customer_is_not_found():
    service = _service()
    first = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    intruder = _sms("hi", phone="+15559999999", conversation_id=first.conversation_id)
    with pytest.raises(NotFoundError):
        service.process_turn(intruder, handoff_text=HANDOFF, tenant=ACME)


def test_resolved_conversation_id_starts_a_new_conversation():
    service = _service()
    first = service.process_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    service.store.resolve(first.conversation_id)
    again = service.process_turn(
        _sms("What is my balance?", conversation_id=first.conversation_id),
        handoff_text=HANDOFF,
        tenant=ACME,
    )
    assert again.conversation_id != first.conversation_id


def test_stream_reply_persists_the_concatenated_chunks():
    generator = ScriptedGenerator(chunks=["Dial ", "*123#", " now."])
    service = _service(generator)
    turn = service.prepare_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    events = asyncio.run(_drain(service.stream_reply(turn)))

    assert [e["done"] for e in events] == [False, False, False, True]
    streamed = "".join(e["content"] for e in events)
    stored = service.store.get_history(turn.conversation_id)[-1]
    assert stored.sender == Sender.AI
    assert stored.content == streamed == "Dial *123# now."
    assert stored.metadata == {}


def test_stream_reply_for_escalated_turn_is_a_single_frame():
    service = _service()
    turn = service.prepare_turn(_sms("I want to complain"), handoff_text=HANDOFF, tenant=ACME)
    events = asyncio.run(_drain(service.stream_reply(turn)))
    assert events == [{"content": HANDOFF, "done": True}]


def test_stream_failure_before_output_sends_apology():
    service = _service(ScriptedGenerator(fail=True))
    turn = service.prepare_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    events = asyncio.run(_drain(service.stream_reply(turn)))
    assert events == [{"content": APOLOGY_TEXT, "done": True, "error": GENERATION_FAILED}]
    assert service.store.get_history(turn.conversation_id)[-1].content == APOLOGY_TEXT


def test_stream_failure_after_output_keeps_partial_text():
    service = _service(ScriptedGenerator(fail_after=2))
    turn = service.prepare_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    events = asyncio.run(_drain(service.stream_reply(turn)))

    assert events[-1] == {"content": "", "done": True, "error": GENERATION_FAILED}
    stored = service.store.get_history(turn.conversation_id)[-1]
    assert stored.content == "Your balance "
    assert stored.metadata == {"partial": True, "error": GENERATION_FAILED}
    assert service.store.get_conversation(turn.conversation_id).generation_failures == 1


def test_closing_the_stream_stores_partial_reply_and_closes_backend():
    generator = ScriptedGenerator()
    service = _service(generator)
    turn = service.prepare_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)

    async def read_one():
        events = service.stream_reply(turn)
        first = await events.__anext__()
        await events.aclose()
        return first

    first = asyncio.run(read_one())
    assert first == {"content": "Your ", "done": False}
    assert generator.stream_closed
    stored = service.store.get_history(turn.conversation_id)[-1]
    assert stored.content == "Your "
    assert stored.metadata == {"partial": True}


def test_agent_reply_assigns_agent():
    service = _service()
    result = service.process_turn(_sms("talk to an agent"), handoff_text=HANDOFF, tenant=ACME)
    service.agent_reply(result.conversation_id, "agent-9", "Hi, Dana here.")
    convo = service.store.get_conversation(result.conversation_id)
    assert convo.assigned_agent == "agent-9"
    assert convo.messages[-1].sender == Sender.AGENT
    assert convo.messages[-1].metadata == {"agent_id": "agent-9"}


def test_unknown_conversation_id_is_rejected_without_creating():
    service = _service()
    with pytest.raises(NotFoundError):
        service.process_turn(
            _sms("What is my balance?", conversation_id="does-not-exist"),
            handoff_text=HANDOFF,
            tenant=ACME,
        )
    assert service.store.list_conversations() == []


class _LockstepClassifier(RuleBasedIntentClassifier):
    """Holds every caller until ``parties`` turns are classifying at once."""

    def __init__(self, parties):
        self._barrier = threading.Barrier(parties, timeout=5)

    def detect_intent(self, text, industry):
        self._barrier.wait()
        return super().detect_intent(text, industry)


def test_racing_escalations_send_one_handoff():
    settings = Settings(generation_timeout=2.0, stream_stall_timeout=2.0)
    generator = ScriptedGenerator()
    service = ConversationService(
        ConversationStore(),
        ResponseGenerator(generator, settings=settings),
        classifier=_LockstepClassifier(2),
        settings=settings,
    )
    texts = ["I want to talk to a human", "Get me a manager"]
    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(
            pool.map(
                lambda text: service.process_turn(_sms(text), handoff_text=HANDOFF, tenant=ACME),
                texts,
            )
        )

    assert len({r.conversation_id for r in results}) == 1
    assert all(r.escalated for r in results)
    assert sorted(r.text for r in results) == ["", HANDOFF]
    assert [r.should_respond for r in results if not r.text] == [False]
    history = service.store.get_history(results[0].conversation_id)
    assert [m.sender for m in history].count(Sender.SYSTEM) == 1
    assert [m.sender for m in history].count(Sender.CUSTOMER) == 2
    assert len(service.store.escalation_queue.pending()) == 1
    assert generator.prompts == []


class _ThreadRecordingStore(ConversationStore):
    def __init__(self):
        super().__init__()
        self.threads = []

    def add_message(self, *args, **kwargs):
        self.threads.append(threading.get_ident())
        return super().add_message(*args, **kwargs)


def test_stream_reply_stores_from_worker_threads():
    store = _ThreadRecordingStore()
    service = _service(store=store)
    turn = service.prepare_turn(_sms("What is my balance?"), handoff_text=HANDOFF, tenant=ACME)
    store.threads.clear()

    async def drain_on_loop():
        loop_thread = threading.get_ident()
        await _drain(service.stream_reply(turn))
        return loop_thread

    loop_thread = asyncio.run(drain_on_loop())
    assert len(store.threads) == 1
    assert loop_thread not in store.threads
