from __future__ import annotations

import asyncio

import pytest

from chat_sync.application.dto.message import MessagePage
from chat_sync.application.exceptions import TransientNetworkError
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.services._tasks import BackgroundTasks
from chat_sync.services.conversation_list import ConversationListStore
from chat_sync.services.history_loader import RestFallbackLoader
from chat_sync.services.message_timeline import MessageTimelineStore
from chat_sync.services.read_receipts import ReadReceiptSynchronizer
from tests.conftest import ME, OTHER, at, make_conversation, make_message


class Harness:
    def __init__(self, api, transport) -> None:
        transport.connected = True
        api.conversations = [
            make_conversation("conv-1", last_message_at=at(4), unread=4),
            make_conversation("conv-2", last_message_at=at(3), unread=1),
        ]
        api.pages[("conv-1", None)] = MessagePage(messages=(
            make_message("r-1", minute=1),
            make_message("own-1", sender_id=ME, minute=1.5),
            make_message("r-2", minute=2),
            make_message("r-3", minute=3),
            make_message("r-4", minute=4),
        ))
        self.api = api
        self.transport = transport
        self.tasks = BackgroundTasks()
        loader = RestFallbackLoader(api)
        self.conversations = ConversationListStore(loader, ME)
        self.timelines: dict[str, MessageTimelineStore] = {
            cid: MessageTimelineStore(cid, ME, loader, api) for cid in ("conv-1", "conv-2")
        }
        self.receipts = ReadReceiptSynchronizer(
            api, transport, self.conversations, ME, self.timelines.get, tasks=self.tasks,
        )


@pytest.fixture
def harness(api, transport) -> Harness:
    return Harness(api, transport)


@pytest.mark.asyncio
async def test_opening_conversation_reads_everything_and_broadcasts_once(harness):
    await harness.conversations.load_initial()

    assert await harness.receipts.on_conversation_opened("conv-1") is True

    timeline = harness.timelines["conv-1"]
    assert timeline.loaded is True
    assert harness.conversations.get("conv-1").unread_count == 0
    assert harness.conversations.get("conv-2").unread_count == 1
    remote = [m for m in timeline.snapshot() if m.sender_id == OTHER]
    assert len(remote) == 4 and all(m.seen for m in remote)
    assert not timeline.get("own-1").seen
    assert harness.api.read_calls == ["conv-1"]
    assert harness.transport.events("mark_read") == [{"conversationId": "conv-1"}]


@pytest.mark.asyncio
async def test_history_is_not_reloaded_when_already_loaded(harness):
    await harness.timelines["conv-1"].load_history()

    await harness.receipts.on_conversation_opened("conv-1")

    assert harness.api.history_calls == [("conv-1", None)]


@pytest.mark.asyncio
async def test_failed_mark_read_keeps_unread_and_stays_silent(harness):
    await harness.conversations.load_initial()
    harness.api.fail_read = TransientNetworkError("timeout")

    assert await harness.receipts.on_conversation_opened("conv-1") is False

    assert harness.conversations.get("conv-1").unread_count == 4
    assert harness.transport.events("mark_read") == []
    assert harness.timelines["conv-1"].sync_error is harness.api.fail_read


@pytest.mark.asyncio
async def test_failed_history_load_still_marks_read(harness):
    await harness.conversations.load_initial()
    harness.api.fail_history = TransientNetworkError("timeout")

    assert await harness.receipts.on_conversation_opened("conv-1") is True
    assert harness.conversations.get("conv-1").unread_count == 0
    assert harness.timelines["conv-1"].sync_error is harness.api.fail_history


@pytest.mark.asyncio
async def test_successful_reopen_clears_sync_error(harness):
    await harness.conversations.load_initial()
    timeline = harness.timelines["conv-1"]
    notified = []
    timeline.subscribe(lambda: notified.append(timeline.sync_error))
    harness.api.fail_read = TransientNetworkError("timeout")
    await harness.receipts.on_conversation_opened("conv-1")

    harness.api.fail_read = None
    assert await harness.receipts.on_conversation_opened("conv-1") is True

    assert timeline.sync_error is None
    assert isinstance(notified[-2], TransientNetworkError)
    assert notified[-1] is None


def test_remote_receipt_only_affects_its_conversation(harness):
    for cid in ("conv-1", "conv-2"):
        harness.timelines[cid].apply_incoming(
            make_message(f"own-{cid}", conversation_id=cid, sender_id=ME, minute=1),
        )

    assert harness.receipts.on_remote_read_receipt("conv-1", read_by=OTHER) == 1

    assert harness.timelines["conv-1"].get("own-conv-1").status == MessageStatus.READ
    assert harness.timelines["conv-2"].get("own-conv-2").status == MessageStatus.SENT


def test_echo_of_own_receipt_is_ignored(harness):
    harness.timelines["conv-1"].apply_incoming(make_message("own", sender_id=ME))

    assert harness.receipts.on_remote_read_receipt("conv-1", read_by=ME) == 0
    assert harness.timelines["conv-1"].get("own").status == MessageStatus.SENT


def test_receipt_for_conversation_without_timeline_is_ignored(harness):
    assert harness.receipts.on_remote_read_receipt("conv-404") == 0


@pytest.mark.asyncio
async def test_live_messages_are_acknowledged_once_per_burst(harness):
    await harness.conversations.load_initial()
    timeline = harness.timelines["conv-1"]
    first, second = make_message("live-1", minute=10), make_message("live-2", minute=11)

    timeline.apply_incoming(first)
    harness.receipts.acknowledge_live(first)
    timeline.apply_incoming(second)
    harness.receipts.acknowledge_live(second)
    await harness.tasks.wait()

    assert timeline.get("live-1").seen and timeline.get("live-2").seen
    assert harness.api.read_calls == ["conv-1"]
    assert harness.transport.events("mark_read") == [{"conversationId": "conv-1"}]


@pytest.mark.asyncio
async def test_message_arriving_during_ack_triggers_another_round(harness):
    timeline = harness.timelines["conv-1"]
    first, second = make_message("live-1", minute=10), make_message("live-2", minute=11)
    timeline.apply_incoming(first)
    harness.receipts.acknowledge_live(first)
    await asyncio.sleep(0)

    timeline.apply_incoming(second)
    harness.receipts.acknowledge_live(second)
    await harness.tasks.wait()

    assert harness.api.read_calls == ["conv-1", "conv-1"]


@pytest.mark.asyncio
async def test_own_live_message_is_not_acknowledged(harness):
    harness.receipts.acknowledge_live(make_message("mine", sender_id=ME))
    await harness.tasks.wait()

    assert harness.api.read_calls == []
