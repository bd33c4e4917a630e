from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    customer_bot_token: str = ""
    support_bot_token: str = ""
    telegram_api_base: str = "https://api.telegram.org"
    request_timeout_seconds: float = 30.0

    # Enables the SQL session store when set; memory-only otherwise.
    database_url: Optional[str] = None

    cors_allow_origins: str = "*"
    log_level: str = "INFO"

    history_limit: int = 30
    list_limit: int = 20
    notify_agents_on_new_chat: bool = True
    auto_replies_path: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
