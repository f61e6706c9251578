"""Telegram notification service."""
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier:
    """Send risk alerts and cycle logs via two Telegram bots.

    Alerts go through the alert bot with sound on; cycle logs go through the
    log bot, muted by default. A delivery failure is logged and reported as
    ``False``, it never interrupts monitoring.
    """

    def __init__(self, config: TelegramConfig, api_url: str = TELEGRAM_API) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id
        self.api_url = api_url.rstrip("/")

    async def _send_message(
        self, message: str, bot_token: str, silent: bool = False
    ) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"{self.api_url}/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": html.escape(message, quote=False),
            "parse_mode": "HTML",
            "disable_notification": silent,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.post(url, json=payload) as response:
                    if response.status != 200:
                        logger.error(
                            "Failed to send Telegram message: HTTP %s", response.status
                        )
                        return False
                    return True
        except aiohttp.ClientError as e:
            logger.error("Failed to send Telegram message: %s", e)
            return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Send a risk alert; ``subject`` becomes the first line."""
        text = f"{subject}\n\n{message}" if subject else message
        if await self._send_message(text, self.alert_bot_token, silent=False):
            logger.info("Telegram alert sent")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        if await self._send_message(message, self.log_bot_token, silent=silent):
            logger.debug("Telegram log sent")
            return True
        return False
