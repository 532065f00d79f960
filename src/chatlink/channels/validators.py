"""Per-channel connect validators.

Widget channels (website, Shopify) need no remote handshake. Every other
channel verifies its credentials against the provider's API.
"""

from __future__ import annotations

import asyncio
import smtplib
from abc import abstractmethod
from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from chatlink.channels.base import ChannelType, ValidationResult, Validator
from chatlink.config import ValidationConfig
from chatlink.errors import ValidationFailure

logger = structlog.get_logger()


def _field(config: Mapping[str, Any], key: str) -> str:
    value = config.get(key)
    if value is None:
        settings = config.get("settings")
        if isinstance(settings, Mapping):
            value = settings.get(key)
    return str(value).strip() if value is not None else ""


def require_fields(config: Mapping[str, Any], fields: tuple[str, ...]) -> dict[str, str]:
    """Return the requested config values or raise ValidationFailure naming the gaps."""
    values = {key: _field(config, key) for key in fields}
    missing = [key for key, value in values.items() if not value]
    if missing:
        raise ValidationFailure(f"Missing required configuration: {', '.join(missing)}")
    return values


class AlwaysSucceedValidator(Validator):
    """Channels installed client-side via the embed snippet."""

    def __init__(self, channel_type: ChannelType) -> None:
        self._channel_type = channel_type

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    async def validate(self, config: Mapping[str, Any]) -> ValidationResult:
        return ValidationResult.ok()


class HttpValidator(Validator):
    """Base for validators that call a provider HTTP API."""

    required_fields: tuple[str, ...] = ()

    def __init__(
        self,
        *,
        api_base: str,
        request_timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.request_timeout_s = request_timeout_s
        self._transport = transport

    async def validate(self, config: Mapping[str, Any]) -> ValidationResult:
        values = require_fields(config, self.required_fields)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.request_timeout_s),
            transport=self._transport,
        ) as client:
            try:
                return await self._verify(client, values)
            except httpx.HTTPError as e:
                logger.warning(
                    "channels.validator.http_error",
                    channel=self.channel_type.value,
                    error=str(e),
                )
                raise ValidationFailure(
                    f"Could not reach the {self.channel_type.value} API. Please try again later."
                ) from e

    @abstractmethod
    async def _verify(self, client: httpx.AsyncClient, values: dict[str, str]) -> ValidationResult:
        ...


def _graph_error(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return None


class WhatsAppValidator(HttpValidator):
    """Checks the business phone number through the Meta Graph API."""

    required_fields = ("access_token", "phone_number_id")

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.WHATSAPP

    async def _verify(self, client: httpx.AsyncClient, values: dict[str, str]) -> ValidationResult:
        resp = await client.get(
            f"{self.api_base}/{values['phone_number_id']}",
            params={"fields": "display_phone_number,verified_name,code_verification_status"},
            headers={"Authorization": f"Bearer {values['access_token']}"},
        )
        if resp.status_code >= 400:
            detail = _graph_error(resp)
            return ValidationResult.failed(
                "WhatsApp Business verification failed. Please check your phone number "
                "and business verification status."
                + (f" ({detail})" if detail else "")
            )
        payload = resp.json()
        if payload.get("code_verification_status") != "VERIFIED":
            return ValidationResult.failed("phone not verified")
        return ValidationResult.ok()


class MessengerValidator(HttpValidator):
    """Checks that the page access token resolves to a page."""

    required_fields = ("access_token",)

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.MESSENGER

    async def _verify(self, client: httpx.AsyncClient, values: dict[str, str]) -> ValidationResult:
        resp = await client.get(
            f"{self.api_base}/me",
            params={"fields": "id,name", "access_token": values["access_token"]},
        )
        if resp.status_code >= 400 or not resp.json().get("id"):
            detail = _graph_error(resp)
            return ValidationResult.failed(
                "Facebook page connection failed. Please ensure your page has proper "
                "permissions and try again."
                + (f" ({detail})" if detail else "")
            )
        return ValidationResult.ok()


class InstagramValidator(HttpValidator):
    """Checks that the Facebook page has an Instagram business account linked."""

    required_fields = ("access_token", "page_id")

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.INSTAGRAM

    async def _verify(self, client: httpx.AsyncClient, values: dict[str, str]) -> ValidationResult:
        resp = await client.get(
            f"{self.api_base}/{values['page_id']}",
            params={
                "fields": "instagram_business_account",
                "access_token": values["access_token"],
            },
        )
        if resp.status_code >= 400 or not resp.json().get("instagram_business_account"):
            return ValidationResult.failed(
                "Instagram Business account verification failed. Please ensure your account "
                "is converted to a Business profile and try again."
            )
        return ValidationResult.ok()


class TelegramValidator(HttpValidator):
    """Resolves the bot identity with ``getMe``."""

    required_fields = ("bot_token",)

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.TELEGRAM

    async def _verify(self, client: httpx.AsyncClient, values: dict[str, str]) -> ValidationResult:
        resp = await client.get(f"{self.api_base}/bot{values['bot_token']}/getMe")
        payload = resp.json() if resp.content else {}
        if resp.status_code >= 400 or not payload.get("ok"):
            return ValidationResult.failed(
                "Invalid Telegram bot token. Please check your token from @BotFather and try again."
            )
        return ValidationResult.ok()


class TwilioSmsValidator(HttpValidator):
    """Fetches the Twilio account and requires it to be active."""

    required_fields = ("account_sid", "auth_token")

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.SMS

    async def _verify(self, client: httpx.AsyncClient, values: dict[str, str]) -> ValidationResult:
        resp = await client.get(
            f"{self.api_base}/Accounts/{values['account_sid']}.json",
            auth=(values["account_sid"], values["auth_token"]),
        )
        if resp.status_code in (401, 403, 404):
            return ValidationResult.failed("SMS provider rejected the account credentials.")
        resp.raise_for_status()
        status = str(resp.json().get("status", "")).lower()
        if status != "active":
            return ValidationResult.failed(f"SMS provider account is not active (status: {status or 'unknown'}).")
        return ValidationResult.ok()


class SmtpValidator(Validator):
    """Opens an SMTP session and logs in with the configured credentials."""

    required_fields = ("smtp_host", "smtp_username", "smtp_password")

    def __init__(self, *, connect_timeout_s: float = 10.0) -> None:
        self.connect_timeout_s = connect_timeout_s

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.EMAIL

    async def validate(self, config: Mapping[str, Any]) -> ValidationResult:
        values = require_fields(config, self.required_fields)
        port_text = _field(config, "smtp_port") or "587"
        try:
            port = int(port_text)
        except ValueError:
            raise ValidationFailure(f"Invalid SMTP port: {port_text}") from None
        use_starttls = _field(config, "smtp_use_starttls").lower() not in {"false", "0", "no"}
        return await asyncio.to_thread(self._login, values, port, use_starttls)

    def _login(self, values: dict[str, str], port: int, use_starttls: bool) -> ValidationResult:
        host = values["smtp_host"]
        try:
            # Port 465 is direct SSL; anything else negotiates STARTTLS
            if port == 465:
                with smtplib.SMTP_SSL(host, port, timeout=self.connect_timeout_s) as smtp:
                    smtp.login(values["smtp_username"], values["smtp_password"])
            else:
                with smtplib.SMTP(host, port, timeout=self.connect_timeout_s) as smtp:
                    smtp.ehlo()
                    if use_starttls:
                        smtp.starttls()
                        smtp.ehlo()
                    smtp.login(values["smtp_username"], values["smtp_password"])
        except smtplib.SMTPAuthenticationError:
            return ValidationResult.failed("SMTP authentication failed. Please check your credentials.")
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("channels.validator.smtp_error", host=host, port=port, error=str(e))
            return ValidationResult.failed(f"Could not connect to SMTP server {host}:{port}.")
        return ValidationResult.ok()


def build_validators(
    config: ValidationConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[ChannelType, Validator]:
    """Default validator for every channel type."""
    graph = config.graph_api_base
    return {
        ChannelType.WEBSITE: AlwaysSucceedValidator(ChannelType.WEBSITE),
        ChannelType.SHOPIFY: AlwaysSucceedValidator(ChannelType.SHOPIFY),
        ChannelType.WHATSAPP: WhatsAppValidator(api_base=graph, transport=transport),
        ChannelType.MESSENGER: MessengerValidator(api_base=graph, transport=transport),
        ChannelType.INSTAGRAM: InstagramValidator(api_base=graph, transport=transport),
        ChannelType.TELEGRAM: TelegramValidator(
            api_base=config.telegram_api_base, transport=transport
        ),
        ChannelType.SMS: TwilioSmsValidator(api_base=config.twilio_api_base, transport=transport),
        ChannelType.EMAIL: SmtpValidator(),
    }
