from supportrelay.services.chat_session import Sender
from supportrelay.services.state_machine import ChatMode

from tests.test_telegram_webhooks import customer_says


def open_web_session(client, chat_id="web_1", **fields):
    return client.post("/api/chat/session", json={"chatId": chat_id, **fields})


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "sessions": 0, "dashboards": 0}


class TestSessions:
    def test_create_web_session(self, client, app):
        response = open_web_session(client, userFirstName="Ann", user_id=7)

        assert response.status_code == 200
        data = response.json()
        assert data["chat_id"] == "web_1"
        assert data["source"] == "web"
        assert data["mode"] == "bot"
        assert data["user_first_name"] == "Ann"
        assert data["user_id"] == "7"
        assert data["messages"] == []

    def test_generated_chat_id(self, client):
        response = client.post("/api/chat/session", json={})
        assert response.json()["chat_id"].startswith("web_")

    def test_reserved_chat_id(self, client):
        response = open_web_session(client, chat_id="tg_111")
        assert response.status_code == 400

    def test_telegram_chat_cannot_be_opened_as_web(self, client):
        customer_says(client, "hello")
        response = client.post("/api/chat/session", json={"chat_id": "tg_111"})
        assert response.status_code == 400

    def test_history(self, client):
        customer_says(client, "hello")

        response = client.get("/api/chat/history/tg_111")

        assert response.status_code == 200
        assert [m["from"] for m in response.json()["messages"]] == ["user", "bot"]
        assert len(client.get("/api/chat/history/tg_111?limit=1").json()["messages"]) == 1

    def test_history_unknown_chat(self, client):
        assert client.get("/api/chat/history/missing").status_code == 404

    def test_list_and_user_sessions(self, client):
        customer_says(client, "hello")
        open_web_session(client, chat_id="web_1", userId="u1")

        listed = client.get("/api/chat/sessions").json()
        mine = client.get("/api/chat/sessions/u1").json()

        assert {s["chat_id"] for s in listed} == {"tg_111", "web_1"}
        assert [s["chat_id"] for s in mine] == ["web_1"]
        assert "messages" not in listed[0]


class TestAgentActions:
    def test_takeover_send_release(self, client, app, customer_bot):
        customer_says(client, "hello")
        agent = {"chatId": "tg_111", "agentId": "dash-1", "agentName": "Bob"}

        taken = client.post("/takeover", json=agent)
        sent = client.post("/send", json={**agent, "message": "Hello from the dashboard"})
        released = client.post("/release", json={"chat_id": "tg_111", "agent_id": "dash-1"})

        assert taken.json()["mode"] == "human"
        assert taken.json()["agent_id"] == "dash-1"
        assert sent.status_code == 200
        assert customer_bot.send_message.await_args.args == ("111", "Hello from the dashboard")
        assert released.json()["mode"] == "bot"
        session = app.state.chat_router.get_session("tg_111")
        assert session.mode == ChatMode.BOT
        assert [m.body for m in session.messages if m.sender == Sender.SYSTEM] == ["Bob connected", "Bob disconnected"]

    def test_takeover_unknown_chat(self, client):
        assert client.post("/takeover", json={"chat_id": "missing"}).status_code == 404

    def test_takeover_conflict(self, client):
        customer_says(client, "hello")
        client.post("/takeover", json={"chat_id": "tg_111", "agent_id": "a"})

        response = client.post("/takeover", json={"chat_id": "tg_111", "agent_id": "b"})

        assert response.status_code == 409

    def test_send_without_takeover(self, client, customer_bot):
        customer_says(client, "hello")
        customer_bot.send_message.reset_mock()

        response = client.post("/send", json={"chat_id": "tg_111", "text": "hi"})

        assert response.status_code == 409
        customer_bot.send_message.assert_not_awaited()

    def test_send_without_content(self, client):
        customer_says(client, "hello")
        client.post("/takeover", json={"chat_id": "tg_111"})

        assert client.post("/send", json={"chat_id": "tg_111", "text": ""}).status_code == 400

    def test_send_requires_chat_id(self, client):
        assert client.post("/send", json={"text": "hi"}).status_code == 422

    def test_release_bot_chat(self, client):
        customer_says(client, "hello")
        assert client.post("/release", json={"chat_id": "tg_111"}).status_code == 409

    def test_supervisor_release(self, client, app):
        customer_says(client, "hello")
        client.post("/takeover", json={"chat_id": "tg_111", "agent_id": "a"})

        response = client.post("/release", json={"chat_id": "tg_111"})

        assert response.status_code == 200
        assert app.state.chat_router.get_session("tg_111").assigned_agent is None
