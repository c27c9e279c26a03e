import pytest
from firebase_admin import messaging

from conftest import FakeFirebaseClient, make_event
from push_relay.event_processor import EventProcessor
from push_relay.schemas import ChangeKind, DispatchOutcome
from push_relay.time_utils import current_millis

CUTOFF = 1700000000000


@pytest.fixture
def client():
    return FakeFirebaseClient(profiles={
        "A": {"nickname": "Alice"},
        "B": {"nickname": "Bob", "pushToken": "tok123"},
    })


@pytest.fixture
def processor(client):
    return EventProcessor(firebase_client=client)


@pytest.mark.asyncio
async def test_new_message_sends_one_notification(client, processor):
    now = current_millis()
    event = make_event(idFrom="A", idTo="B", content="hi", timestamp=now + 1000)

    outcomes = await processor.process_batch([event], cutoff_ms=now)

    assert outcomes == [DispatchOutcome.SENT]
    assert client.sent == [{"token": "tok123", "title": "Alice", "body": "hi"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [ChangeKind.MODIFIED, ChangeKind.REMOVED])
async def test_non_added_changes_are_ignored(client, processor, kind):
    event = make_event(kind=kind, idFrom="A", idTo="B", content="hi", timestamp=CUTOFF + 1)

    outcomes = await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.IGNORED_KIND]
    assert client.lookups == []
    assert client.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("timestamp", [CUTOFF, CUTOFF - 1, str(CUTOFF)])
async def test_old_messages_are_ignored(client, processor, timestamp):
    event = make_event(idFrom="A", idTo="B", content="hi", timestamp=timestamp)

    outcomes = await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.STALE]
    assert client.lookups == []
    assert client.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("timestamp", [None, {"seconds": 1}, "soon"])
async def test_unsupported_timestamp_is_rejected(client, processor, timestamp):
    event = make_event(idFrom="A", idTo="B", content="hi", timestamp=timestamp)

    outcomes = await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.UNSUPPORTED_TIMESTAMP]
    assert client.lookups == []
    assert client.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("timestamp", [str(CUTOFF + 1), f"{CUTOFF + 1}.0"])
async def test_numeric_string_timestamp_is_dispatched(client, processor, timestamp):
    event = make_event(idFrom="A", idTo="B", content="hi", timestamp=timestamp)

    assert await processor.process_batch([event], cutoff_ms=CUTOFF) == [DispatchOutcome.SENT]
    assert len(client.sent) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("sender_profile", [None, {"nickname": ""}, {"pushToken": "x"}])
async def test_unknown_sender_falls_back_to_placeholder(sender_profile):
    profiles = {"B": {"pushToken": "tok123"}}
    if sender_profile is not None:
        profiles["A"] = sender_profile
    client = FakeFirebaseClient(profiles=profiles)
    processor = EventProcessor(firebase_client=client)
    event = make_event(idFrom="A", idTo="B", content="hi", timestamp=CUTOFF + 1)

    await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert client.sent == [{"token": "tok123", "title": "Unknown", "body": "hi"}]


@pytest.mark.asyncio
async def test_sender_lookup_error_does_not_abort_dispatch():
    client = FakeFirebaseClient(
        profiles={"B": {"pushToken": "tok123"}},
        lookup_errors={"A": RuntimeError("deadline exceeded")},
    )
    processor = EventProcessor(firebase_client=client, unknown_sender_nickname="Someone")
    event = make_event(idFrom="A", idTo="B", content="hi", timestamp=CUTOFF + 1)

    outcomes = await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.SENT]
    assert client.sent[0]["title"] == "Someone"


@pytest.mark.asyncio
async def test_missing_recipient_sends_nothing(client, processor):
    event = make_event(idFrom="A", idTo="nobody", content="hi", timestamp=CUTOFF + 1)

    outcomes = await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.NO_RECIPIENT]
    assert client.sent == []


@pytest.mark.asyncio
async def test_recipient_without_token_sends_nothing(client, processor):
    event = make_event(idFrom="B", idTo="A", content="hi", timestamp=CUTOFF + 1)

    outcomes = await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.NO_TOKEN]
    assert client.lookups == ["B", "A"]
    assert client.sent == []


@pytest.mark.asyncio
async def test_message_without_recipient_id(client, processor):
    event = make_event(idFrom="A", content="hi", timestamp=CUTOFF + 1)

    assert await processor.process_batch([event], cutoff_ms=CUTOFF) == [DispatchOutcome.NO_RECIPIENT]
    assert client.sent == []


@pytest.mark.asyncio
async def test_failing_event_does_not_affect_siblings():
    client = FakeFirebaseClient(
        profiles={
            "A": {"nickname": "Alice"},
            "B": {"pushToken": "tok123"},
        },
        lookup_errors={"broken": RuntimeError("unavailable")},
    )
    processor = EventProcessor(firebase_client=client)
    events = [
        make_event(document_id="bad", idFrom="A", idTo="broken", content="lost", timestamp=CUTOFF + 1),
        make_event(document_id="good", idFrom="A", idTo="B", content="hi", timestamp=CUTOFF + 2),
    ]

    outcomes = await processor.process_batch(events, cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.FAILED, DispatchOutcome.SENT]
    assert client.sent == [{"token": "tok123", "title": "Alice", "body": "hi"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    RuntimeError("quota exceeded"),
    messaging.UnregisteredError("Requested entity was not found."),
])
async def test_send_failure_is_contained(client, processor, error):
    client.send_error = error
    event = make_event(idFrom="A", idTo="B", content="hi", timestamp=CUTOFF + 1)

    outcomes = await processor.process_batch([event], cutoff_ms=CUTOFF)

    assert outcomes == [DispatchOutcome.FAILED]


@pytest.mark.asyncio
async def test_empty_batch(processor):
    assert await processor.process_batch([], cutoff_ms=CUTOFF) == []
