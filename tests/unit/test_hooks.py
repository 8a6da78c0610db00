"""
Unit tests for lifecycle hooks.

Tests cover:
- HooksEmitter subscription and ordering
- Propagation control
- Leak warnings
- create events from a collection
"""

import asyncio
import logging
from typing import Optional

import pytest
from pydantic import BaseModel

from entdb_memory import Collection
from entdb_memory.hooks import CreateEvent, DeleteEvent, HooksEmitter, UpdateEvent


class User(BaseModel):
    id: int
    name: Optional[str] = None


class TestHooksEmitter:
    """Tests for HooksEmitter."""

    def test_listeners_run_in_order(self):
        emitter = HooksEmitter()
        calls = []
        emitter.on("delete", lambda event: calls.append("first"))
        emitter.on("delete", lambda event: calls.append("second"))

        assert emitter.emit(DeleteEvent()) is True
        assert calls == ["first", "second"]

    def test_unsubscribe(self):
        emitter = HooksEmitter()
        calls = []
        unsubscribe = emitter.on("delete", calls.append)

        unsubscribe()
        emitter.emit(DeleteEvent())

        assert calls == []
        assert emitter.listener_count("delete") == 0

    def test_off_unknown_listener_is_noop(self):
        emitter = HooksEmitter()

        emitter.off("create", print)

        assert emitter.listener_count("create") == 0

    def test_unknown_event(self):
        emitter = HooksEmitter()

        with pytest.raises(ValueError, match="Unknown hook event 'insert'"):
            emitter.on("insert", print)

    def test_stop_immediate_propagation(self):
        emitter = HooksEmitter()
        calls = []

        def first(event):
            calls.append("first")
            event.stop_immediate_propagation()

        emitter.on("delete", first)
        emitter.on("delete", lambda event: calls.append("second"))
        emitter.emit(DeleteEvent())

        assert calls == ["first"]

    def test_prevent_default(self):
        emitter = HooksEmitter()
        emitter.on("delete", lambda event: event.prevent_default())

        event = DeleteEvent()

        assert emitter.emit(event) is False
        assert event.default_prevented

    def test_remove_all_listeners(self):
        emitter = HooksEmitter()
        emitter.on("create", print)
        emitter.on("update", print)

        emitter.remove_all_listeners("create")
        assert emitter.listener_count("create") == 0
        assert emitter.listener_count("update") == 1

        emitter.remove_all_listeners()
        assert emitter.listener_count("update") == 0

    @pytest.mark.asyncio
    async def test_emit_async_awaits_listeners(self):
        emitter = HooksEmitter()
        calls = []

        async def listener(event):
            await asyncio.sleep(0)
            calls.append(event.path)

        emitter.on("update", listener)
        await emitter.emit_async(UpdateEvent(path=("name",)))

        assert calls == [("name",)]

    def test_leak_warning_logged_once(self, caplog):
        emitter = HooksEmitter(max_listeners=2, owner="users")

        with caplog.at_level(logging.WARNING, logger="entdb_memory.hooks"):
            for _ in range(4):
                emitter.on("create", lambda event: None)

        warnings = [r for r in caplog.records if "Possible hook listener leak" in r.getMessage()]
        assert len(warnings) == 1
        assert "users" in warnings[0].getMessage()

    def test_leak_warning_disabled(self, caplog):
        emitter = HooksEmitter(max_listeners=0)

        with caplog.at_level(logging.WARNING, logger="entdb_memory.hooks"):
            for _ in range(20):
                emitter.on("create", lambda event: None)

        assert not [r for r in caplog.records if "leak" in r.getMessage()]


class TestCollectionHooks:
    """Tests for events published by a collection."""

    @pytest.mark.asyncio
    async def test_create_event(self):
        users = Collection(User)
        events = []
        users.hooks.on("create", events.append)

        user = await users.create({"id": "1"})

        assert len(events) == 1
        assert isinstance(events[0], CreateEvent)
        assert events[0].record is user
        assert events[0].initial_values == {"id": "1"}

    @pytest.mark.asyncio
    async def test_async_create_listener(self):
        users = Collection(User)
        seen = []

        async def listener(event):
            await asyncio.sleep(0)
            seen.append(event.record["id"])

        users.hooks.on("create", listener)
        await users.create({"id": 1})

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_listener_errors_propagate(self):
        users = Collection(User)

        def fail(event):
            raise RuntimeError("listener failed")

        users.hooks.on("create", fail)

        with pytest.raises(RuntimeError, match="listener failed"):
            await users.create({"id": 1})

        # the record was stored before the event fired
        assert users.count() == 1

    @pytest.mark.asyncio
    async def test_update_events_are_not_cancellable(self):
        users = Collection(User)
        user = await users.create({"id": 1, "name": "John"})
        users.hooks.on("update", lambda event: event.prevent_default())

        updated = await users.update(user, data={"name": "Kate"})

        assert updated["name"] == "Kate"
        assert users.find_first()["name"] == "Kate"
