"""
Tests del Read-State Tracker
"""
import pytest

from agrimarket.messaging.errors import NotAParticipant, NotFound
from agrimarket.messaging.message_log import MessageLog
from agrimarket.messaging.notifier import MESSAGES_READ, THREAD_TOUCHED
from agrimarket.messaging.read_state import ReadStateTracker
from agrimarket.messaging.thread_store import ThreadStore
from conftest import create_user

@pytest.fixture
async def setup(db, notifier, buyer, seller):
    threads = ThreadStore(db)
    thread = await threads.get_or_create(buyer, seller)
    log = MessageLog(db, threads, notifier)
    tracker = ReadStateTracker(db, threads, notifier)
    return thread, log, tracker

async def test_mark_read_only_touches_receiver_messages(setup, buyer, seller):
    thread, log, tracker = setup
    await log.append(thread.id, buyer.id, "hola")
    await log.append(thread.id, buyer.id, "¿sigue disponible?")
    await log.append(thread.id, seller.id, "sí")

    assert await tracker.unread_count(thread.id, seller.id) == 2
    assert await tracker.unread_count(thread.id, buyer.id) == 1

    assert await tracker.mark_read(thread.id, seller.id) == 2
    assert await tracker.unread_count(thread.id, seller.id) == 0
    # Los mensajes que recibió el comprador siguen sin leer
    assert await tracker.unread_count(thread.id, buyer.id) == 1

    history = await log.list_by_thread(thread.id)
    assert [m.is_read for m in history] == [True, True, False]
    assert all(m.read_at is not None for m in history[:2])

async def test_mark_read_is_idempotent(setup, notifier, buyer, seller):
    thread, log, tracker = setup
    await log.append(thread.id, buyer.id, "hola")
    assert await tracker.mark_read(thread.id, seller.id) == 1

    async with notifier.subscribe("thread", thread.id) as sub:
        assert await tracker.mark_read(thread.id, seller.id) == 0
        assert await sub.get(timeout=0.05) is None

async def test_mark_read_publishes(setup, notifier, buyer, seller):
    thread, log, tracker = setup
    await log.append(thread.id, buyer.id, "hola")
    async with notifier.subscribe("thread", thread.id) as thread_sub, \
            notifier.subscribe("inbox", seller.id) as inbox_sub:
        await tracker.mark_read(thread.id, seller.id)
        assert (await thread_sub.get(timeout=1)).type == MESSAGES_READ
        assert (await inbox_sub.get(timeout=1)).type == THREAD_TOUCHED

async def test_mark_read_on_empty_thread(setup, seller):
    thread, _, tracker = setup
    assert await tracker.mark_read(thread.id, seller.id) == 0

async def test_mark_read_errors(db, setup):
    thread, _, tracker = setup
    outsider = await create_user(db, "Other", "buyer")
    with pytest.raises(NotAParticipant):
        await tracker.mark_read(thread.id, outsider.id)
    with pytest.raises(NotFound):
        await tracker.mark_read("chat:a:b", outsider.id)

async def test_unread_total(db, notifier, buyer, seller, admin):
    threads = ThreadStore(db)
    log = MessageLog(db, threads, notifier)
    tracker = ReadStateTracker(db, threads, notifier)
    t1 = await threads.get_or_create(buyer, seller)
    t2 = await threads.get_or_create(admin, buyer)
    await log.append(t1.id, seller.id, "a")
    await log.append(t2.id, admin.id, "b")
    await log.append(t2.id, admin.id, "c")
    assert await tracker.unread_total(buyer.id) == 3
