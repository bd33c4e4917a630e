from unittest.mock import AsyncMock

import pytest

from supportrelay.services.chat_session import (
    AgentChannel,
    AgentRef,
    Attachment,
    ChatMessage,
    OriginChannel,
    Sender,
)
from supportrelay.services.delivery_service import DeliveryService
from supportrelay.services.result import Result

from tests.conftest import make_bot

TELEGRAM_AGENT = AgentRef(agent_id="101", name="Alice")
DASHBOARD_AGENT = AgentRef(agent_id="dash", name="Bob", channel=AgentChannel.DASHBOARD)


def make_socket():
    websocket = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


@pytest.fixture
def delivery(customer_bot, support_bot, connections):
    return DeliveryService(customer_bot, support_bot, connections)


class TestToUser:
    @pytest.mark.asyncio
    async def test_external_text_is_escaped(self, delivery, customer_bot):
        message = ChatMessage(sender=Sender.BOT, body="1 < 2")

        result = await delivery.to_user("tg_42", OriginChannel.EXTERNAL, "42", message)

        assert result.ok is True
        customer_bot.send_message.assert_awaited_once()
        assert customer_bot.send_message.await_args.args == ("42", "1 &lt; 2")

    @pytest.mark.asyncio
    async def test_external_image_goes_as_photo(self, delivery, customer_bot):
        attachment = Attachment(url="https://files/x.jpg", name="x.jpg", mime_type="image/jpeg")
        message = ChatMessage.from_agent(TELEGRAM_AGENT, "look", attachment)

        await delivery.to_user("tg_42", OriginChannel.EXTERNAL, "42", message)

        customer_bot.send_photo.assert_awaited_once_with("42", "https://files/x.jpg", caption="look")
        customer_bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_external_without_address(self, delivery):
        result = await delivery.to_user("tg_42", OriginChannel.EXTERNAL, None, ChatMessage(sender=Sender.BOT, body="x"))
        assert result.error_code == "delivery_error"

    @pytest.mark.asyncio
    async def test_external_failure_is_reported(self, delivery, customer_bot):
        customer_bot.send_message.return_value = Result.failure("blocked", "telegram_error")

        result = await delivery.to_user("tg_42", OriginChannel.EXTERNAL, "42", ChatMessage(sender=Sender.BOT, body="x"))

        assert result.ok is False
        assert result.error_code == "telegram_error"

    @pytest.mark.asyncio
    async def test_web_user_gets_socket_event(self, delivery, connections):
        websocket = make_socket()
        connections.chat_connections["web_1"] = {websocket}

        result = await delivery.to_user("web_1", OriginChannel.WEB, None, ChatMessage(sender=Sender.BOT, body="hi"))

        assert result.ok is True
        payload = websocket.send_json.await_args.args[0]
        assert payload["event"] == "message_appended"
        assert payload["data"]["message"]["text"] == "hi"

    @pytest.mark.asyncio
    async def test_web_user_offline(self, delivery):
        result = await delivery.to_user("web_1", OriginChannel.WEB, None, ChatMessage(sender=Sender.BOT, body="hi"))
        assert result.error_code == "no_connection"


class TestToAgent:
    @pytest.mark.asyncio
    async def test_telegram_agent(self, delivery, support_bot):
        result = await delivery.to_agent(TELEGRAM_AGENT, "<b>hi</b>", reply_markup={"inline_keyboard": []})

        assert result.ok is True
        support_bot.send_message.assert_awaited_once_with("101", "<b>hi</b>", reply_markup={"inline_keyboard": []})

    @pytest.mark.asyncio
    async def test_dashboard_agent_needs_a_dashboard(self, delivery, connections):
        assert (await delivery.to_agent(DASHBOARD_AGENT, "hi")).error_code == "no_connection"

        connections.dashboards.add(make_socket())
        assert (await delivery.to_agent(DASHBOARD_AGENT, "hi")).ok is True

    @pytest.mark.asyncio
    async def test_notify_agents_counts_successes(self, connections):
        support_bot = make_bot()
        support_bot.send_message.side_effect = [Result.success({}), Result.failure("blocked", "telegram_error")]
        delivery = DeliveryService(make_bot(), support_bot, connections)
        agents = [TELEGRAM_AGENT, AgentRef(agent_id="202", name="Carl")]

        assert await delivery.notify_agents(agents, "new chat") == 1


class TestPush:
    @pytest.mark.asyncio
    async def test_push_reaches_dashboards_and_chat(self, delivery, connections):
        dashboard = make_socket()
        web_user = make_socket()
        other_user = make_socket()
        connections.dashboards.add(dashboard)
        connections.chat_connections["web_1"] = {web_user}
        connections.chat_connections["web_2"] = {other_user}

        await delivery.push("mode_changed", {"chat_id": "web_1"}, chat_id="web_1")

        dashboard.send_json.assert_awaited_once()
        web_user.send_json.assert_awaited_once()
        other_user.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_broken_socket_is_dropped(self, delivery, connections):
        broken = make_socket()
        broken.send_json.side_effect = RuntimeError("closed")
        connections.dashboards.add(broken)

        await delivery.push("session_created", {"chat_id": "web_1"})

        assert broken not in connections.dashboards
