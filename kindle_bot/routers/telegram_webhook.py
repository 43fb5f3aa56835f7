import json
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request, status

from kindle_bot.logging_config import get_logger
from kindle_bot.schemas.telegram import TelegramWebhookResponse
from kindle_bot.services.polling_service import parse_update

logger = get_logger("telegram_webhook")

router = APIRouter()


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    try:
        return await request.json()
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            decoded = raw.decode(enc, errors="replace")
            return json.loads(decoded)
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


def _check_secret(expected: str, provided: Optional[str]) -> None:
    if expected and provided != expected:
        logger.warning("Invalid webhook secret token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid secret token")


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    """Receive an update pushed by Telegram and route it to the bot handler."""
    settings = request.app.state.settings
    _check_secret(settings.webhook_secret, x_telegram_bot_api_secret_token)

    body = await parse_telegram_update(request)
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid telegram payload")

    update = parse_update(body)
    if update is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid telegram update")

    try:
        await request.app.state.bot_handler.handle_update(update)
    except Exception as e:
        logger.error(f"Error handling webhook update: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Update handling failed")

    return TelegramWebhookResponse(success=True)
