from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from supportrelay.config import Settings
from supportrelay.services.chat_router import ChatRouter
from supportrelay.services.delivery_service import DeliveryService
from supportrelay.services.result import Result
from supportrelay.services.session_registry import SessionRegistry
from supportrelay.services.session_store import NullSessionStore
from supportrelay.services.socket_manager import ConnectionManager


def make_bot(file_url: str = "https://api.telegram.org/file/bottoken/photos/file_1.jpg"):
    """TelegramService double whose sends all succeed."""
    bot = Mock()
    bot.configured = True
    bot.send_message = AsyncMock(return_value=Result.success({"message_id": 1}))
    bot.send_photo = AsyncMock(return_value=Result.success({"message_id": 2}))
    bot.send_document = AsyncMock(return_value=Result.success({"message_id": 3}))
    bot.answer_callback_query = AsyncMock(return_value=Result.success(True))
    bot.get_file_url = AsyncMock(return_value=Result.success(file_url))
    return bot


def sent_texts(bot) -> list[str]:
    return [call.args[1] for call in bot.send_message.await_args_list]


@pytest.fixture
def customer_bot():
    return make_bot()


@pytest.fixture
def support_bot():
    return make_bot()


@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def store():
    return Mock(spec=NullSessionStore)


@pytest.fixture
def chat_router(registry, customer_bot, support_bot, connections, store):
    return ChatRouter(
        registry=registry,
        delivery=DeliveryService(customer_bot, support_bot, connections),
        store=store,
    )


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, database_url=None, auto_replies_path=None, log_level="WARNING")


@pytest.fixture
def app(test_settings, customer_bot, support_bot):
    from supportrelay.main import create_app

    return create_app(test_settings, customer_bot=customer_bot, support_bot=support_bot, store=NullSessionStore())


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
