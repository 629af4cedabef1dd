"""
Termin Watch - Notifications

Alerts fan out to every configured channel (ntfy push, TextBelt SMS,
Telegram). Delivery is best-effort: one broken channel never blocks the
others, and nothing raises out of Notifier.
"""

import logging
from typing import List, Optional, Sequence

import requests

from .config import ProxySpec, Settings, proxy_for_requests

logger = logging.getLogger("TerminWatch.Notifier")


AVAILABILITY_TITLE = "German Consulate - Appointments Available!"
AVAILABILITY_MESSAGE = "🚨 APPOINTMENT SLOTS MAY BE AVAILABLE! Check immediately!"
ERROR_TITLE = "Consulate Checker Error"


class NotificationError(Exception):
    """A channel could not deliver"""


class NotificationChannel:
    name = "channel"

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 15.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    def send_availability(self, message: str, screenshot: Optional[bytes] = None) -> bool:
        raise NotImplementedError

    def send_error(self, message: str) -> bool:
        """False when this channel does not carry error alerts"""
        raise NotImplementedError


class NtfyChannel(NotificationChannel):
    """Push via ntfy.sh topics"""

    name = "ntfy"

    def __init__(self, topic: str, server: str = "https://ntfy.sh", **kwargs):
        super().__init__(**kwargs)
        self.topic = topic
        self.server = server.rstrip("/")

    def _publish(self, message: str, title: str, priority: str, tags: Sequence[str]) -> bool:
        headers = {"Title": title, "Priority": priority, "Tags": ",".join(tags)}
        try:
            response = self.session.post(
                f"{self.server}/{self.topic}",
                data=message.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NotificationError(f"ntfy request failed: {e}") from e
        if response.status_code >= 400:
            raise NotificationError(f"ntfy HTTP {response.status_code}: {response.text[:200]}")
        return True

    def send_availability(self, message: str, screenshot: Optional[bytes] = None) -> bool:
        return self._publish(message, AVAILABILITY_TITLE, "urgent", ("rotating_light", "de"))

    def send_error(self, message: str) -> bool:
        return self._publish(f"Checker error: {message}", ERROR_TITLE, "high", ("warning",))


class TextBeltChannel(NotificationChannel):
    """
    SMS via TextBelt (https://textbelt.com).

    Availability goes to every number in `phones`; error alerts only go to
    `error_phones`, and are skipped when none are configured.
    """

    name = "sms"
    API_URL = "https://textbelt.com/text"

    def __init__(
        self,
        phones: Sequence[str],
        error_phones: Sequence[str] = (),
        api_key: str = "textbelt",
        proxy: Optional[ProxySpec] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.phones = tuple(phones)
        self.error_phones = tuple(error_phones)
        self.api_key = api_key
        self.proxies = proxy_for_requests(proxy)

    def _send_one(self, phone: str, message: str) -> None:
        try:
            response = self.session.post(
                self.API_URL,
                data={"phone": phone, "message": message, "key": self.api_key},
                proxies=self.proxies,
                timeout=self.timeout,
            )
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            raise NotificationError(f"SMS send failed: {e}") from e

        if not result.get("success"):
            raise NotificationError(f"TextBelt API error: {result.get('error') or 'Unknown error'}")

        if result.get("quotaRemaining") is not None:
            logger.info(f"[SMS] Message sent. Quota remaining: {result['quotaRemaining']}")

    def _broadcast(self, phones: Sequence[str], message: str, kind: str) -> bool:
        failures = []
        for phone in phones:
            try:
                self._send_one(phone, message)
            except NotificationError as e:
                failures.append(f"{phone}: {e}")

        succeeded = len(phones) - len(failures)
        logger.info(f"[SMS] {kind} alert sent to {succeeded}/{len(phones)} numbers")
        if failures:
            logger.error(f"[SMS] Failed to send to {len(failures)} numbers: {'; '.join(failures)}")
        if succeeded == 0:
            raise NotificationError(f"SMS {kind} alert reached no numbers")
        return True

    def send_availability(self, message: str, screenshot: Optional[bytes] = None) -> bool:
        if not self.phones:
            return False
        return self._broadcast(self.phones, message, "Availability")

    def send_error(self, message: str) -> bool:
        if not self.error_phones:
            return False
        return self._broadcast(self.error_phones, f"⚠️ Consulate checker error: {message}", "Error")


class TelegramChannel(NotificationChannel):
    """Bot API message, or photo when a screenshot is attached"""

    name = "telegram"
    API_BASE = "https://api.telegram.org"

    def __init__(self, bot_token: str, chat_id: str, **kwargs):
        super().__init__(**kwargs)
        self.bot_token = bot_token
        self.chat_id = chat_id

    def _call(self, method: str, data: dict, files: Optional[dict] = None) -> bool:
        url = f"{self.API_BASE}/bot{self.bot_token}/{method}"
        try:
            response = self.session.post(url, data=data, files=files, timeout=self.timeout)
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise NotificationError(f"Telegram {method} failed: {e}") from e
        if not payload.get("ok"):
            raise NotificationError(f"Telegram {method} error: {payload.get('description', 'unknown')}")
        return True

    def send_availability(self, message: str, screenshot: Optional[bytes] = None) -> bool:
        if screenshot:
            return self._call(
                "sendPhoto",
                {"chat_id": self.chat_id, "caption": message},
                files={"photo": ("calendar.png", screenshot, "image/png")},
            )
        return self._call("sendMessage", {"chat_id": self.chat_id, "text": message})

    def send_error(self, message: str) -> bool:
        return self._call("sendMessage", {"chat_id": self.chat_id, "text": f"⚠️ {ERROR_TITLE}\n{message}"})


class Notifier:
    """Fan-out to all channels; success means at least one delivery"""

    def __init__(self, channels: Sequence[NotificationChannel] = ()):
        self.channels: List[NotificationChannel] = list(channels)

    def availability_found(self, result=None) -> bool:
        message = AVAILABILITY_MESSAGE
        screenshot = None
        if result is not None:
            message = f"{AVAILABILITY_MESSAGE}\n{result.message}"
            screenshot = result.screenshot
        return self._dispatch("Availability", lambda ch: ch.send_availability(message, screenshot))

    def error_occurred(self, message: str) -> bool:
        return self._dispatch("Error", lambda ch: ch.send_error(message))

    def _dispatch(self, kind: str, send) -> bool:
        if not self.channels:
            logger.warning(f"[NOTIFY] {kind} alert not sent: no channels configured")
            return False

        delivered = []
        errors = []
        for channel in self.channels:
            try:
                if send(channel):
                    delivered.append(channel.name)
            except Exception as e:
                errors.append(f"{channel.name}: {e}")

        if delivered:
            logger.info(f"✓ {kind} alert sent via: {', '.join(delivered)}")
        if errors:
            logger.error(f"⚠️ Some notifications failed: {'; '.join(errors)}")
        return bool(delivered)


def build_notifier(settings: Settings, session: Optional[requests.Session] = None) -> Notifier:
    channels: List[NotificationChannel] = []

    if settings.ntfy_topic:
        channels.append(NtfyChannel(settings.ntfy_topic, server=settings.ntfy_server, session=session))

    if settings.sms_phone_numbers or settings.error_phone_numbers:
        channels.append(
            TextBeltChannel(
                settings.sms_phone_numbers,
                error_phones=settings.error_phone_numbers,
                api_key=settings.textbelt_api_key,
                proxy=settings.notify_proxy,
                session=session,
            )
        )

    if settings.telegram_bot_token and settings.telegram_chat_id:
        channels.append(TelegramChannel(settings.telegram_bot_token, settings.telegram_chat_id, session=session))

    logger.info(f"[NOTIFY] Channels: {', '.join(c.name for c in channels) or 'none'}")
    return Notifier(channels)
