"""Embeddable widget snippet generation.

The snippet is a public contract: customers paste it into their own sites
and Shopify themes. Bump ``SNIPPET_VERSION`` whenever its shape changes.
"""

from __future__ import annotations

import html
import json
import re
from string import Template
from typing import Any, Protocol

from chatlink.channels.base import Channel
from chatlink.channels.registry import ChannelRegistry, default_registry
from chatlink.config import BrandingConfig, ChatlinkConfig, EmbedConfig
from chatlink.errors import NotSupportedError

SNIPPET_VERSION = 1

# Sequences that could end the surrounding <script> element or break JS parsing.
_SCRIPT_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

# Liquid (Shopify themes) expands {{ }} and {% %} even inside <script>; braces
# are escaped inside string literals only, leaving the object structure intact.
_TEMPLATE_ESCAPES = {"{": "\\u007b", "}": "\\u007d"}
_JSON_STRING = re.compile(r'"(?:[^"\\]|\\.)*"')


class ChatbotConfigProvider(Protocol):
    def get_branding(self, chatbot_id: str) -> BrandingConfig:
        ...


class SettingsBrandingProvider:
    """Branding from configuration: per-chatbot overrides over shared defaults."""

    def __init__(self, config: ChatlinkConfig) -> None:
        self.config = config

    def get_branding(self, chatbot_id: str) -> BrandingConfig:
        override = self.config.chatbots.get(chatbot_id)
        if override is None:
            return self.config.branding
        return self.config.branding.model_copy(update=override.model_dump(exclude_unset=True))


def script_json(value: Any) -> str:
    """Serialize ``value`` as a JS literal that is safe inside a <script> block."""
    encoded = json.dumps(value, indent=2, ensure_ascii=False)
    for raw, escaped in _SCRIPT_ESCAPES.items():
        encoded = encoded.replace(raw, escaped)
    return _JSON_STRING.sub(_escape_template_braces, encoded)


def _escape_template_braces(match: re.Match[str]) -> str:
    literal = match.group(0)
    for raw, escaped in _TEMPLATE_ESCAPES.items():
        literal = literal.replace(raw, escaped)
    return literal


class IntegrationCodeGenerator:
    """Renders the embed snippet for channel types that have a template."""

    def __init__(
        self,
        registry: ChannelRegistry = default_registry,
        embed: EmbedConfig | None = None,
    ) -> None:
        self.registry = registry
        self.embed = embed or EmbedConfig()

    def generate(self, channel: Channel, branding: BrandingConfig) -> str:
        template = self.registry.get_template(channel.type)
        if template.embed_code_template is None:
            raise NotSupportedError(f"{template.name} has no embeddable integration code")

        widget_config = {
            "chatbotId": channel.chatbot_id,
            "snippetVersion": SNIPPET_VERSION,
            "platform": channel.type.value,
            "name": branding.name,
            "primaryColor": branding.primary_color,
            "welcomeMessage": branding.welcome_message,
            "position": branding.position,
            "autoOpen": self.embed.auto_open,
            "showBranding": self.embed.show_branding,
        }
        return Template(template.embed_code_template).substitute(
            version=SNIPPET_VERSION,
            config=script_json(widget_config).replace("\n", "\n  "),
            widget_src=html.escape(self.embed.widget_src, quote=True),
        )
