import pytest
from sqlalchemy.pool import StaticPool

from supportrelay.database import make_session_factory
from supportrelay.models import ChatSessionRecord
from supportrelay.services.chat_session import (
    AgentChannel,
    AgentRef,
    Attachment,
    ChatMessage,
    ChatSession,
    OriginChannel,
    Participant,
    Sender,
)
from supportrelay.services.session_store import NullSessionStore, SqlSessionStore
from supportrelay.services.state_machine import ChatMode
from supportrelay.services.state_service import take_over


@pytest.fixture
def session_factory():
    return make_session_factory(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def sql_store(session_factory):
    return SqlSessionStore(session_factory)


def save(store: SqlSessionStore, session: ChatSession) -> None:
    store.upsert_session(session)
    for message in session.messages:
        store.append_message(session.chat_id, message)


class TestSqlSessionStore:
    def test_round_trip(self, sql_store):
        session = ChatSession(
            chat_id="tg_42",
            origin=OriginChannel.EXTERNAL,
            participant=Participant(first_name="Ann", last_name="Lee", user_id="42"),
            address="42",
        )
        session.append(ChatMessage(sender=Sender.USER, body="hi"))
        session.append(
            ChatMessage(
                sender=Sender.USER,
                body="see file",
                attachment=Attachment(url="https://files/x.pdf", name="x.pdf", mime_type="application/pdf"),
            )
        )
        save(sql_store, session)

        [loaded] = sql_store.load_sessions()

        assert loaded.chat_id == "tg_42"
        assert loaded.origin == OriginChannel.EXTERNAL
        assert loaded.mode == ChatMode.BOT
        assert loaded.participant == session.participant
        assert loaded.address == "42"
        assert [m.body for m in loaded.messages] == ["hi", "see file"]
        assert loaded.messages[1].attachment.name == "x.pdf"
        assert loaded.messages[0].timestamp.tzinfo is not None

    def test_human_session_keeps_agent(self, sql_store):
        session = ChatSession(chat_id="web_1", origin=OriginChannel.WEB)
        take_over(session, AgentRef(agent_id="dash", name="Bob", channel=AgentChannel.DASHBOARD))
        save(sql_store, session)

        [loaded] = sql_store.load_sessions()

        assert loaded.mode == ChatMode.HUMAN
        assert loaded.assigned_agent == AgentRef(agent_id="dash", name="Bob", channel=AgentChannel.DASHBOARD)
        assert loaded.visited is True
        assert loaded.messages[0].sender == Sender.SYSTEM

    def test_upsert_updates_existing_row(self, sql_store, session_factory):
        session = ChatSession(chat_id="web_1", origin=OriginChannel.WEB)
        sql_store.upsert_session(session)
        session.escalation_requested = True
        sql_store.upsert_session(session)

        db = session_factory()
        try:
            assert db.query(ChatSessionRecord).count() == 1
            assert db.get(ChatSessionRecord, "web_1").requesting_human is True
        finally:
            db.close()

    def test_human_row_without_agent_falls_back_to_bot(self, sql_store, session_factory):
        db = session_factory()
        session = ChatSession(chat_id="web_1", origin=OriginChannel.WEB)
        try:
            db.add(
                ChatSessionRecord(
                    id="web_1",
                    source="web",
                    mode="human",
                    created_at=session.created_at,
                    last_activity_at=session.last_activity_at,
                )
            )
            db.commit()
        finally:
            db.close()

        [loaded] = sql_store.load_sessions()

        assert loaded.mode == ChatMode.BOT
        assert loaded.assigned_agent is None


class TestNullSessionStore:
    def test_does_nothing(self):
        store = NullSessionStore()
        session = ChatSession(chat_id="web_1", origin=OriginChannel.WEB)

        store.upsert_session(session)
        store.append_message("web_1", ChatMessage(sender=Sender.USER, body="hi"))

        assert store.load_sessions() == []
