# tests/conftest.py
"""
Pytest configuration and fixtures.
Provides in-memory fakes for the storefront API collaborators.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from storefront_chat.api_client import ApiError
from storefront_chat.models import CatalogProduct, Conversation, SendTurnResult


def make_reply(assistant_reply: Any, conversation_id: Any = 1, title: str = "Chat", status: str = "active") -> SendTurnResult:
    return SendTurnResult.model_validate(
        {
            "assistantResponse": assistant_reply,
            "conversation": {"id": conversation_id, "title": title, "status": status},
        }
    )


class FakeBackend:
    """Records every call; replies are consumed in order."""

    def __init__(
        self,
        replies: Optional[List[SendTurnResult]] = None,
        conversations: Optional[List[Conversation]] = None,
        products: Optional[List[CatalogProduct]] = None,
        failing_ids: tuple = (),
    ) -> None:
        self.replies = list(replies or [])
        self.conversations = list(conversations or [])
        self.products = list(products or [])
        self.failing_ids = set(failing_ids)
        self.fail_send = False
        self.fail_products = False
        self.sent: List[tuple] = []
        self.cart_calls: List[tuple] = []
        self.release: Optional[asyncio.Event] = None

    async def send_turn(self, conversation_id, text):
        self.sent.append((conversation_id, text))
        if self.release is not None:
            await self.release.wait()
        if self.fail_send:
            raise ApiError("POST /api/chat returned 500", status_code=500)
        return self.replies.pop(0)

    async def load_conversations(self):
        return list(self.conversations)

    async def list_products(self):
        if self.fail_products:
            raise ApiError("GET /api/products failed")
        return list(self.products)

    async def mutate_cart(self, line, action):
        self.cart_calls.append((action, line.id, line.quantity))
        await asyncio.sleep(0)
        if line.id in self.failing_ids:
            raise ApiError(f"cart {action} failed for {line.id}")
        return {"ok": True}


class RecordingNavigator:
    def __init__(self) -> None:
        self.targets: List[str] = []

    def navigate(self, target_page: str) -> None:
        self.targets.append(target_page)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()


@pytest.fixture
def catalog_products() -> List[CatalogProduct]:
    return [
        CatalogProduct(id=7, title="Firewall Pro", price=199.0),
        CatalogProduct(id=3, title="VPN Shield", price=49.0),
    ]


@pytest.fixture
def stored_conversation() -> Dict[str, Any]:
    return {
        "id": 42,
        "title": "Antivirus",
        "status": "archived",
        "created_at": "2024-05-01T10:00:00Z",
        "messages": [
            {"role": "user", "content": [{"text": "Je cherche un antivirus"}]},
            {
                "role": "assistant",
                "content": [
                    {"text": '{"event":"suggest","message":"Voici","productList":[{"id":7}]}'}
                ],
            },
            {"role": "assistant", "content": [{"text": "{broken json"}]},
        ],
    }
