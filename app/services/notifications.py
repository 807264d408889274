"""
Notification Dispatcher.

Sends welcome / expiry-warning / renewal messages over email (Resend REST API)
and WhatsApp (Meta Graph API). Channels are chosen once at startup by
build_dispatcher(); with nothing configured a NoopChannel is used so callers
never have to null-check. Delivery problems are logged and reported as
False, never raised.
"""
import html
import logging
import re
from typing import Callable, List, Optional, Tuple

import requests

from app.core.config import (
    APP_NAME,
    FRONTEND_URL,
    NOTIFY_FROM_EMAIL,
    NOTIFY_TIMEOUT_SECONDS,
    RESEND_API_KEY,
    WHATSAPP_PHONE_NUMBER_ID,
    WHATSAPP_TOKEN,
)
from app.models import Account, NotificationKind

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
GRAPH_API_URL = "https://graph.facebook.com/v21.0"

# audit(account_id, kind, channel, success, detail)
AuditCallback = Callable[[Optional[int], str, str, bool, Optional[str]], None]


class NotificationError(Exception):
    pass


class NotificationChannel:
    name = "base"

    def can_reach(self, account: Account) -> bool:
        raise NotImplementedError

    def send(self, account: Account, subject: str, text: str, html_body: Optional[str] = None) -> bool:
        """Return True when the provider accepted the message; raise NotificationError on failure."""
        raise NotImplementedError


class NoopChannel(NotificationChannel):
    name = "noop"

    def can_reach(self, account: Account) -> bool:
        return True

    def send(self, account: Account, subject: str, text: str, html_body: Optional[str] = None) -> bool:
        logger.info("[Notify] No channel configured, skipping '%s' for %s", subject, account.email)
        return False


class ResendEmailChannel(NotificationChannel):
    name = "email"

    def __init__(self, api_key: str, from_email: str = NOTIFY_FROM_EMAIL, timeout: int = NOTIFY_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout

    def can_reach(self, account: Account) -> bool:
        return bool(account.email)

    def send(self, account: Account, subject: str, text: str, html_body: Optional[str] = None) -> bool:
        payload = {
            "from": self.from_email,
            "to": [account.email],
            "subject": subject,
            "text": text,
        }
        if html_body:
            payload["html"] = html_body
        try:
            response = requests.post(
                RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Resend request failed: {e}") from e

        if response.status_code not in (200, 201, 202):
            raise NotificationError(f"Resend returned {response.status_code}: {response.text[:300]}")
        logger.info("[Notify] Email '%s' sent to %s", subject, account.email)
        return True


class WhatsAppChannel(NotificationChannel):
    name = "whatsapp"

    def __init__(self, access_token: str, phone_number_id: str, timeout: int = NOTIFY_TIMEOUT_SECONDS):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.timeout = timeout

    @staticmethod
    def normalize_phone(phone: Optional[str]) -> str:
        # Graph API wants digits only, country code included
        return re.sub(r"\D", "", phone or "")

    def can_reach(self, account: Account) -> bool:
        return len(self.normalize_phone(account.phone)) >= 8

    def send(self, account: Account, subject: str, text: str, html_body: Optional[str] = None) -> bool:
        url = f"{GRAPH_API_URL}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": self.normalize_phone(account.phone),
            "type": "text",
            "text": {"preview_url": False, "body": f"{subject}\n\n{text}"},
        }
        try:
            response = requests.post(
                url,
                headers={"Authorization": f"Bearer {self.access_token}"},
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"WhatsApp request failed: {e}") from e

        if response.status_code != 200:
            raise NotificationError(f"WhatsApp returned {response.status_code}: {response.text[:300]}")
        logger.info("[Notify] WhatsApp '%s' sent to account %s", subject, account.id)
        return True


# ---------------------------------------------------------------- messages

def _greeting(account: Account) -> str:
    return f"Hi {account.name}," if account.name else "Hi,"


def _format_date(account: Account) -> str:
    return account.expires_at.strftime("%B %d, %Y")


def welcome_message(account: Account) -> Tuple[str, str, str]:
    subject = f"Your {APP_NAME} access code"
    text = (
        f"{_greeting(account)}\n"
        f"Your payment was received. Your access code is: {account.access_code}\n"
        f"Sign in at {FRONTEND_URL} with {account.email} and this code.\n"
        f"Access is valid until {_format_date(account)}."
    )
    body = f"""
    <p>{html.escape(_greeting(account))}</p>
    <p>Your payment was received. Your access code is:</p>
    <p style="font-size: 24px; letter-spacing: 4px;"><strong>{html.escape(account.access_code)}</strong></p>
    <p>Sign in at <a href="{FRONTEND_URL}">{FRONTEND_URL}</a> with {html.escape(account.email)} and this code.</p>
    <p>Access is valid until {_format_date(account)}.</p>
    """
    return subject, text, body.strip()


def expiration_warning_message(account: Account, days_left: int) -> Tuple[str, str, str]:
    days = "1 day" if days_left == 1 else f"{days_left} days"
    subject = f"Your {APP_NAME} access expires in {days}"
    text = (
        f"{_greeting(account)}\n"
        f"Your access expires on {_format_date(account)} ({days} left).\n"
        f"Renew at {FRONTEND_URL} to keep your progress."
    )
    body = f"""
    <p>{html.escape(_greeting(account))}</p>
    <p>Your access expires on <strong>{_format_date(account)}</strong> ({days} left).</p>
    <p><a href="{FRONTEND_URL}">Renew now</a> to keep your progress.</p>
    """
    return subject, text, body.strip()


def renewal_message(account: Account) -> Tuple[str, str, str]:
    subject = f"Your {APP_NAME} access was renewed"
    text = (
        f"{_greeting(account)}\n"
        f"Your access was renewed until {_format_date(account)}.\n"
        f"Your new access code is: {account.access_code}"
    )
    body = f"""
    <p>{html.escape(_greeting(account))}</p>
    <p>Your access was renewed until <strong>{_format_date(account)}</strong>.</p>
    <p>Your new access code is: <strong>{html.escape(account.access_code)}</strong></p>
    """
    return subject, text, body.strip()


# -------------------------------------------------------------- dispatcher

class NotificationDispatcher:
    def __init__(self, channels: List[NotificationChannel]):
        self.channels = channels or [NoopChannel()]

    @property
    def channel_names(self) -> List[str]:
        return [channel.name for channel in self.channels]

    def send_welcome(self, account: Account, audit: Optional[AuditCallback] = None) -> bool:
        return self._deliver(account, NotificationKind.WELCOME, welcome_message(account), audit)

    def send_expiration_warning(self, account: Account, days_left: int, audit: Optional[AuditCallback] = None) -> bool:
        return self._deliver(
            account,
            NotificationKind.EXPIRATION_WARNING,
            expiration_warning_message(account, days_left),
            audit,
        )

    def send_renewal_confirmation(self, account: Account, audit: Optional[AuditCallback] = None) -> bool:
        return self._deliver(account, NotificationKind.RENEWAL, renewal_message(account), audit)

    def _deliver(self, account: Account, kind: str, message: Tuple[str, str, str], audit: Optional[AuditCallback]) -> bool:
        subject, text, html_body = message
        delivered = False
        for channel in self.channels:
            if not channel.can_reach(account):
                continue
            detail = None
            try:
                ok = bool(channel.send(account, subject, text, html_body))
                if not ok:
                    detail = "not delivered"
            except Exception as e:  # a broken channel must never break the lifecycle
                ok = False
                detail = str(e)
                logger.warning("[Notify] %s via %s failed for account %s: %s", kind, channel.name, account.id, e)

            if audit is not None:
                try:
                    audit(account.id, kind, channel.name, ok, detail)
                except Exception:
                    logger.exception("[Notify] Could not record %s attempt for account %s", kind, account.id)
            delivered = delivered or ok
        return delivered


def build_dispatcher() -> NotificationDispatcher:
    """Pick channels from configuration. Called once at startup."""
    channels: List[NotificationChannel] = []
    if RESEND_API_KEY:
        channels.append(ResendEmailChannel(RESEND_API_KEY))
    if WHATSAPP_TOKEN and WHATSAPP_PHONE_NUMBER_ID:
        channels.append(WhatsAppChannel(WHATSAPP_TOKEN, WHATSAPP_PHONE_NUMBER_ID))
    if not channels:
        logger.warning("[Notify] No notification provider configured; messages will be skipped")
        channels.append(NoopChannel())
    return NotificationDispatcher(channels)
