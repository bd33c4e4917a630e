"""Helpers shared by the two Telegram webhooks."""

import json
from typing import Optional

from fastapi import Request

from supportrelay.logging_config import get_logger
from supportrelay.schemas.telegram import TelegramMessage
from supportrelay.services.chat_session import Attachment
from supportrelay.services.telegram_service import TelegramService

logger = get_logger("telegram_updates")


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None; any JSON value other than an object is None.
    """
    try:
        data = await request.json()
    except Exception as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")
    else:
        if isinstance(data, dict):
            return data
        logger.warning(f"Telegram payload is {type(data).__name__}, not an object")
        return None

    raw = await request.body()
    for encoding in ("utf-8", "latin-1"):
        try:
            data = json.loads(raw.decode(encoding, errors="replace"))
        except ValueError:
            continue
        if isinstance(data, dict):
            return data

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


async def resolve_attachment(bot: TelegramService, message: TelegramMessage) -> Optional[Attachment]:
    """Turn a photo or document into a file reference. None when absent or unresolvable."""
    if message.photo:
        largest = message.photo[-1]
        url = await bot.get_file_url(largest.file_id)
        if not url.ok:
            logger.warning(f"Could not resolve photo {largest.file_id}: {url.error}")
            return None
        return Attachment(url=url.value, name=f"photo_{largest.file_unique_id}.jpg", mime_type="image/jpeg")

    if message.document:
        document = message.document
        url = await bot.get_file_url(document.file_id)
        if not url.ok:
            logger.warning(f"Could not resolve document {document.file_id}: {url.error}")
            return None
        return Attachment(
            url=url.value,
            name=document.file_name or "document",
            mime_type=document.mime_type or "application/octet-stream",
        )

    return None
