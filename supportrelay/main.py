from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from supportrelay.config import Settings, settings
from supportrelay.database import make_session_factory
from supportrelay.logging_config import get_logger, setup_logging
from supportrelay.routers import customer_webhook, dashboard, socket, support_webhook
from supportrelay.services.auto_responder import load_rules
from supportrelay.services.chat_router import ChatRouter
from supportrelay.services.delivery_service import DeliveryService
from supportrelay.services.session_registry import SessionRegistry
from supportrelay.services.session_store import NullSessionStore, SessionStore, SqlSessionStore
from supportrelay.services.socket_manager import ConnectionManager
from supportrelay.services.telegram_service import TelegramService

logger = get_logger("main")


def build_store(config: Settings) -> SessionStore:
    """SQL store when DATABASE_URL is set, memory-only otherwise."""
    if not config.database_url:
        return NullSessionStore()
    try:
        return SqlSessionStore(make_session_factory(config.database_url))
    except Exception as e:
        logger.error(f"Session store unavailable, running memory-only: {e}", exc_info=True)
        return NullSessionStore()


def create_app(
    config: Optional[Settings] = None,
    customer_bot: Optional[TelegramService] = None,
    support_bot: Optional[TelegramService] = None,
    store: Optional[SessionStore] = None,
) -> FastAPI:
    config = config or settings
    setup_logging(config.log_level)

    app = FastAPI(
        title="Support Relay",
        description="Relays customer chats between an auto-responder and human support agents",
        version="0.1.0",
    )

    cors_origins = [origin.strip() for origin in config.cors_allow_origins.split(",") if origin.strip()]
    if not cors_origins:
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(customer_webhook.router)
    app.include_router(support_webhook.router)
    app.include_router(dashboard.router)
    app.include_router(socket.router)

    timeout = config.request_timeout_seconds
    customer_bot = customer_bot or TelegramService(config.customer_bot_token, config.telegram_api_base, timeout)
    support_bot = support_bot or TelegramService(config.support_bot_token, config.telegram_api_base, timeout)
    connections = ConnectionManager()

    app.state.customer_bot = customer_bot
    app.state.support_bot = support_bot
    app.state.connections = connections
    app.state.chat_router = ChatRouter(
        registry=SessionRegistry(),
        delivery=DeliveryService(customer_bot, support_bot, connections),
        store=store or build_store(config),
        rules=load_rules(config.auto_replies_path),
        history_limit=config.history_limit,
        list_limit=config.list_limit,
        notify_on_new_chat=config.notify_agents_on_new_chat,
    )

    @app.on_event("startup")
    async def hydrate_sessions() -> None:
        if not customer_bot.configured:
            logger.warning("CUSTOMER_BOT_TOKEN not set; Telegram customer deliveries will fail")
        if not support_bot.configured:
            logger.warning("SUPPORT_BOT_TOKEN not set; Telegram agent deliveries will fail")
        app.state.chat_router.hydrate()

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "sessions": len(app.state.chat_router.registry),
            "dashboards": len(connections.dashboards),
        }

    return app


app = create_app()
