"""
Conversation dispatcher tests
"""

import asyncio

import pytest

from conftest import FakeBackend, make_reply
from storefront_chat.catalog import CatalogIndex
from storefront_chat.dispatcher import ConversationDispatcher, ConversationPhase, SendInProgressError
from storefront_chat.models import Conversation, Message, ProductRef

GREETING = "Bonjour !"
FALLBACK = "Désolé."


def _dispatcher(backend, **kwargs):
    return ConversationDispatcher(backend, greeting_text=GREETING, fallback_text=FALLBACK, **kwargs)


class TestStartNew:
    def test_fresh_dispatcher_is_new_with_greeting(self, backend):
        dispatcher = _dispatcher(backend)
        assert dispatcher.phase == ConversationPhase.NEW
        assert dispatcher.messages == [Message(role="assistant", content=GREETING)]

    @pytest.mark.asyncio
    async def test_start_new_resets_state(self):
        backend = FakeBackend(replies=[make_reply({"event": "message", "message": "ok"}, conversation_id=5)])
        dispatcher = _dispatcher(backend)
        await dispatcher.send("hello")

        dispatcher.start_new()

        assert dispatcher.state.id is None
        assert dispatcher.state.title == ""
        assert dispatcher.state.status == "active"
        assert len(dispatcher.messages) == 1


class TestSend:
    @pytest.mark.asyncio
    async def test_message_reply_scenario(self):
        backend = FakeBackend(replies=[make_reply({"event": "message", "message": "Bonjour"}, conversation_id=11)])
        dispatcher = _dispatcher(backend)

        result = await dispatcher.send("Salut")

        assert backend.sent == [(None, "Salut")]
        assert dispatcher.messages[-2] == Message(role="user", content="Salut")
        assert dispatcher.messages[-1] == Message(role="assistant", content="Bonjour", event="message")
        assert result.delivered
        assert dispatcher.state.id == 11
        assert dispatcher.phase == ConversationPhase.ACTIVE

    @pytest.mark.asyncio
    async def test_second_send_reuses_id(self):
        backend = FakeBackend(
            replies=[
                make_reply({"event": "message", "message": "1"}, conversation_id=11),
                make_reply({"event": "message", "message": "2"}, conversation_id=11),
            ]
        )
        dispatcher = _dispatcher(backend)
        await dispatcher.send("a")
        await dispatcher.send("b")
        assert backend.sent == [(None, "a"), (11, "b")]

    @pytest.mark.asyncio
    async def test_suggest_string_is_enriched(self, catalog_products):
        raw = '{"event":"suggest","message":"Voici","productList":[{"id":7}]}'
        backend = FakeBackend(replies=[make_reply(raw)])
        dispatcher = _dispatcher(backend, catalog=CatalogIndex(catalog_products))

        await dispatcher.send("un firewall ?")

        last = dispatcher.messages[-1]
        assert last.event == "suggest"
        assert last.product_refs == [ProductRef(id=7, title="Firewall Pro")]
        assert backend.cart_calls == []

    @pytest.mark.asyncio
    async def test_not_json_reply(self):
        backend = FakeBackend(replies=[make_reply("not json")])
        dispatcher = _dispatcher(backend)
        await dispatcher.send("?")
        assert dispatcher.messages[-1] == Message(role="assistant", content="not json", event="message")

    @pytest.mark.asyncio
    async def test_do_event_runs_cart_fan_out(self, catalog_products):
        reply = {
            "event": "do",
            "message": "Retiré",
            "action": "remove from cart",
            "productList": [{"id": 3, "quantity": 2}, {"id": 9}],
        }
        backend = FakeBackend(replies=[make_reply(reply)], failing_ids=(9,))
        dispatcher = _dispatcher(backend, catalog=CatalogIndex(catalog_products))

        result = await dispatcher.send("retire tout")

        assert sorted(backend.cart_calls) == [("remove", 3, 2), ("remove", 9, 1)]
        assert result.outcome.failed == 1
        assert dispatcher.cart_revision == 1
        last = dispatcher.messages[-1]
        assert last.action == "remove from cart"
        assert last.product_refs == [ProductRef(id=3, quantity=2, title="VPN Shield"), ProductRef(id=9)]

    @pytest.mark.asyncio
    async def test_go_to_page_navigates(self, navigator):
        reply = {"event": "do", "message": "Allons-y", "action": "go to page", "page": "/cart"}
        backend = FakeBackend(replies=[make_reply(reply)])
        dispatcher = _dispatcher(backend, navigator=navigator)

        await dispatcher.send("mon panier")

        assert navigator.targets == ["/cart"]
        assert dispatcher.messages[-1].target_page == "/cart"

    @pytest.mark.asyncio
    async def test_status_follows_server(self):
        backend = FakeBackend(
            replies=[make_reply({"event": "message", "message": "Un humain arrive"}, status="needs_human")]
        )
        dispatcher = _dispatcher(backend)
        await dispatcher.send("je veux un humain")
        assert dispatcher.phase == ConversationPhase.NEEDS_HUMAN

    @pytest.mark.asyncio
    async def test_trace_lists_pipeline_steps(self):
        backend = FakeBackend(replies=[make_reply({"event": "message", "message": "ok"})])
        dispatcher = _dispatcher(backend)
        result = await dispatcher.send("hi")
        assert [entry["step"] for entry in result.trace] == ["normalize", "conversation_update"]


class TestSendFailures:
    @pytest.mark.asyncio
    async def test_transport_failure_appends_fallback(self):
        backend = FakeBackend(
            replies=[make_reply({"event": "message", "message": "ok"}, conversation_id=8, title="T")]
        )
        dispatcher = _dispatcher(backend)
        await dispatcher.send("first")
        before = dispatcher.state

        backend.fail_send = True
        result = await dispatcher.send("second")

        assert not result.delivered
        assert dispatcher.messages[-1] == Message(role="assistant", content=FALLBACK)
        assert dispatcher.messages[-2] == Message(role="user", content="second")
        assert dispatcher.state == before
        assert not dispatcher.is_sending

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, backend):
        dispatcher = _dispatcher(backend)
        with pytest.raises(ValueError):
            await dispatcher.send("   ")
        assert len(dispatcher.messages) == 1

    @pytest.mark.asyncio
    async def test_concurrent_send_rejected(self):
        backend = FakeBackend(replies=[make_reply({"event": "message", "message": "done"})])
        backend.release = asyncio.Event()
        dispatcher = _dispatcher(backend)

        first = asyncio.ensure_future(dispatcher.send("one"))
        await asyncio.sleep(0)
        assert dispatcher.is_sending
        with pytest.raises(SendInProgressError):
            await dispatcher.send("two")

        backend.release.set()
        await first
        contents = [m.content for m in dispatcher.messages]
        assert contents == [GREETING, "one", "done"]


class TestLoad:
    def test_load_replaces_transcript(self, backend, stored_conversation):
        dispatcher = _dispatcher(backend)
        dispatcher.load(Conversation.model_validate(stored_conversation))

        assert dispatcher.state.id == 42
        assert dispatcher.phase == ConversationPhase.ARCHIVED
        assert [m.role for m in dispatcher.messages] == ["user", "assistant", "assistant"]

    @pytest.mark.asyncio
    async def test_send_after_archived_load_keeps_server_status(self, stored_conversation):
        backend = FakeBackend(
            replies=[make_reply({"event": "message", "message": "ok"}, conversation_id=42, status="archived")]
        )
        dispatcher = _dispatcher(backend)
        dispatcher.load(Conversation.model_validate(stored_conversation))

        await dispatcher.send("encore ?")

        assert backend.sent == [(42, "encore ?")]
        assert dispatcher.state.status == "archived"
        assert len(dispatcher.messages) == 5

    @pytest.mark.asyncio
    async def test_load_by_id(self, stored_conversation):
        backend = FakeBackend(conversations=[Conversation.model_validate(stored_conversation)])
        dispatcher = _dispatcher(backend)

        await dispatcher.load_by_id("42")
        assert dispatcher.state.title == "Antivirus"

        with pytest.raises(KeyError):
            await dispatcher.load_by_id(404)


class TestCatalogRefresh:
    @pytest.mark.asyncio
    async def test_refresh_loads_products(self, catalog_products):
        backend = FakeBackend(products=catalog_products)
        dispatcher = _dispatcher(backend)
        assert await dispatcher.refresh_catalog()
        assert len(dispatcher.catalog) == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_index(self, catalog_products):
        backend = FakeBackend()
        backend.fail_products = True
        dispatcher = _dispatcher(backend, catalog=CatalogIndex(catalog_products))
        assert not await dispatcher.refresh_catalog()
        assert len(dispatcher.catalog) == 2


class TestMalformedPayloads:
    @pytest.mark.asyncio
    async def test_deeply_nested_reply_still_appends_message(self):
        raw = "[" * 100000
        backend = FakeBackend(replies=[make_reply(raw, conversation_id=4)])
        dispatcher = _dispatcher(backend)

        result = await dispatcher.send("?")

        assert result.delivered
        assert dispatcher.messages[-1] == Message(role="assistant", content=raw, event="message")
        assert dispatcher.state.id == 4

    def test_load_survives_deeply_nested_turn(self, backend, stored_conversation):
        stored_conversation["messages"].append({"role": "assistant", "content": [{"text": "{" * 100000}]})
        dispatcher = _dispatcher(backend)

        dispatcher.load(Conversation.model_validate(stored_conversation))

        assert len(dispatcher.messages) == 4
        assert dispatcher.messages[-1].event == "message"


class TestCartListener:
    @pytest.mark.asyncio
    async def test_failing_listener_does_not_lose_reply(self):
        def listener():
            raise RuntimeError("cart screen gone")

        reply = {"event": "do", "message": "Ajouté", "action": "add to cart", "productList": [{"id": 1}]}
        backend = FakeBackend(replies=[make_reply(reply, conversation_id=5)])
        dispatcher = _dispatcher(backend, on_cart_changed=listener)

        result = await dispatcher.send("ajoute")

        assert [m.role for m in dispatcher.messages] == ["assistant", "user", "assistant"]
        assert dispatcher.messages[-1].content == "Ajouté"
        assert result.outcome.cart_refresh_requested
        assert dispatcher.cart_revision == 1
        assert backend.cart_calls == [("add", 1, 1)]
