from conftest import ScriptedGenerator
from supportdesk.channels import SmsAdapter
from supportdesk.conversations.models import Channel, ConversationStatus, Sender


def _sms(client, body, sender="+15551234567", to="+15550001111", sid="SM1"):
    return client.post(
        "/webhooks/sms",
        data={"From": sender, "To": to, "Body": body, "MessageSid": sid},
    )


def test_sms_liveness(harness):
    resp = harness.client.get("/webhooks/sms")
    assert resp.status_code == 200
    assert resp.text == "SMS webhook is active"


def test_sms_reply_is_sent_through_the_tenant_gateway(harness):
    resp = _sms(harness.client, "What is my balance?")
    assert resp.status_code == 200
    assert resp.text == "Message received"
    assert harness.sms.gateways["acme-mobile"].sent == [("+15551234567", "Your balance is 42 units.")]

    conversation_id = harness.store.find_active("acme-mobile:customer_15551234567", Channel.SMS)
    history = harness.store.get_history(conversation_id)
    assert [m.sender for m in history] == [Sender.CUSTOMER, Sender.AI]
    assert history[0].metadata == {"external_message_id": "SM1"}


def test_long_replies_are_truncated_before_storing_and_sending(make_harness):
    harness = make_harness(ScriptedGenerator(reply="z" * 310))
    _sms(harness.client, "What is my balance?")
    [(_, sent)] = harness.sms.sent
    assert len(sent) == 300
    assert sent.endswith("...")

    conversation_id = harness.store.find_active("acme-mobile:customer_15551234567", Channel.SMS)
    assert harness.store.get_history(conversation_id)[-1].content == sent


def test_each_tenant_replies_from_its_own_number(harness):
    _sms(harness.client, "What is my balance?", to="+15550001111")
    _sms(harness.client, "What is my balance?", to="+15550002222")
    assert set(harness.sms.gateways) == {"acme-mobile", "first-bank"}
    bank = harness.store.list_conversations(company_id="first-bank")
    assert len(bank) == 1
    assert bank[0].customer_id == "first-bank:customer_15551234567"


def test_escalation_sends_the_sms_handoff(harness):
    _sms(harness.client, "I need a supervisor now")
    assert harness.sms.sent == [("+15551234567", SmsAdapter.handoff_text)]
    [conversation] = harness.store.list_conversations()
    assert conversation.status == ConversationStatus.ESCALATED

    _sms(harness.client, "Hello?", sid="SM2")
    assert len(harness.sms.sent) == 1
    assert len(harness.store.get_history(conversation.id)) == 3


def test_missing_fields_are_rejected(harness):
    resp = harness.client.post("/webhooks/sms", data={"To": "+15550001111", "Body": "hi"})
    assert resp.status_code == 400
    resp = harness.client.post("/webhooks/sms", data={"From": "+1555", "To": "+15550001111"})
    assert resp.status_code == 400
    assert harness.store.list_conversations() == []


def test_unknown_number_without_default_tenant(harness, make_harness):
    assert _sms(harness.client, "hi", to="+19999999999").status_code == 404

    routed = make_harness(settings_overrides={"default_sms_tenant": "first-bank"})
    assert _sms(routed.client, "What is my balance?", to="+19999999999").status_code == 200
    assert routed.sms.gateways["first-bank"].sent
