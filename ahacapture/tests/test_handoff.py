"""Tests for the pending capture handoff slot."""

import asyncio

import pytest

from ahacapture.engine.handoff import (
    CONTEXT_MENU_MODE,
    PENDING_CAPTURE_KEY,
    CaptureTrigger,
    PendingCaptureSlot,
)


@pytest.fixture
def slot(kv):
    return PendingCaptureSlot(kv, grace=0.01)


@pytest.mark.asyncio
async def test_take_consumes_once(slot, kv):
    await slot.put(CaptureTrigger(text="quote", url="https://example.com/a", mode=CONTEXT_MENU_MODE))

    first = await slot.take()
    second = await slot.take()

    assert first.text == "quote"
    assert first.mode == CONTEXT_MENU_MODE
    assert second is None
    assert await kv.get(PENDING_CAPTURE_KEY) is None


@pytest.mark.asyncio
async def test_concurrent_takers_get_one_capture(slot):
    await slot.put(CaptureTrigger(text="only once"))

    results = await asyncio.gather(*(slot.take() for _ in range(3)))

    assert [r.text for r in results if r is not None] == ["only once"]


@pytest.mark.asyncio
async def test_take_waits_for_late_writer(kv):
    slot = PendingCaptureSlot(kv, grace=0.2)

    async def late_put():
        await asyncio.sleep(0.05)
        await slot.put(CaptureTrigger(text="late"))

    writer = asyncio.create_task(late_put())
    trigger = await slot.take()
    await writer

    assert trigger is not None
    assert trigger.text == "late"


def test_trigger_builds_highlight_draft():
    trigger = CaptureTrigger(text="selected text", url="https://example.com/p?q=1", mode=CONTEXT_MENU_MODE)

    draft = trigger.draft(group="Reading", category="Quotes", note="Topic", full_url=True)

    assert draft.content == "selected text"
    assert draft.entry_type == "User Highlight"
    assert draft.source.display == "https://example.com/p?q=1"
    assert draft.group == "Reading"


def test_trigger_defaults_from_partial_dict():
    trigger = CaptureTrigger.from_dict({"text": None})
    assert trigger.text == ""
    assert trigger.mode == "popup_manual"
    assert trigger.source() is None
    assert trigger.draft(content="typed").content == "typed"
