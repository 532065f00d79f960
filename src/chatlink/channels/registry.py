"""Channel registry.

Static catalog of every supported channel type: display metadata, setup
documentation, the config keys its validator reads and, for widget-based
channels, the embed snippet template.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from chatlink.channels.base import ChannelType
from chatlink.errors import NotFoundError

# Placeholders are filled by ``chatlink.embed.IntegrationCodeGenerator``.
WEBSITE_EMBED_TEMPLATE = """\
<!-- AI Orchestrator Chatbot Widget v$version -->
<script>
  window.aiOrchestratorConfig = $config;
</script>
<script src="$widget_src" async></script>
<!-- End AI Orchestrator Widget -->"""

SHOPIFY_EMBED_TEMPLATE = """\
{% comment %} AI Orchestrator Chatbot Widget v$version: paste before </body> in layout/theme.liquid {% endcomment %}
<script>
  window.aiOrchestratorConfig = $config;
</script>
<script src="$widget_src" async></script>
{% comment %} End AI Orchestrator Widget {% endcomment %}"""


@dataclass(frozen=True)
class ChannelTemplate:
    """Immutable metadata for one channel type."""

    type: ChannelType
    name: str
    description: str
    icon: str
    setup_steps: tuple[str, ...]
    requirements: frozenset[str] = field(default_factory=frozenset)
    features: frozenset[str] = field(default_factory=frozenset)
    config_fields: tuple[str, ...] = ()
    embed_code_template: str | None = None

    @property
    def supports_embed(self) -> bool:
        return self.embed_code_template is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API response."""
        return {
            "type": self.type.value,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "setup_steps": list(self.setup_steps),
            "requirements": sorted(self.requirements),
            "features": sorted(self.features),
            "config_fields": list(self.config_fields),
            "supports_embed": self.supports_embed,
        }


class ChannelRegistry:
    """Read-only lookup over channel templates, in enum order."""

    def __init__(self, templates: list[ChannelTemplate]) -> None:
        by_type = {template.type: template for template in templates}
        missing = [t.value for t in ChannelType if t not in by_type]
        if missing:
            raise ValueError(f"Registry is missing templates for: {', '.join(missing)}")
        self._templates = {t: by_type[t] for t in ChannelType}

    def get_template(self, channel_type: ChannelType | str) -> ChannelTemplate:
        resolved = resolve_channel_type(channel_type)
        return self._templates[resolved]

    def list_types(self) -> tuple[ChannelType, ...]:
        return tuple(self._templates)

    def templates(self) -> Iterator[ChannelTemplate]:
        return iter(self._templates.values())

    def to_dict(self) -> list[dict[str, Any]]:
        return [template.to_dict() for template in self.templates()]


def resolve_channel_type(value: ChannelType | str) -> ChannelType:
    """Coerce a string such as ``"whatsapp"`` into a ChannelType."""
    if isinstance(value, ChannelType):
        return value
    try:
        return ChannelType(str(value).strip().lower())
    except ValueError:
        raise NotFoundError(f"Unknown channel type: {value!r}") from None


_TEMPLATES: list[ChannelTemplate] = [
    ChannelTemplate(
        type=ChannelType.WEBSITE,
        name="Website Widget",
        description="Embed the chatbot directly on your website with customizable appearance",
        icon="🌐",
        setup_steps=(
            "Copy the integration code",
            "Paste it before the closing </body> tag",
            "Customize appearance in settings",
            "Test the widget functionality",
        ),
        requirements=frozenset({"Website with HTML access"}),
        features=frozenset(
            {"Custom styling", "Mobile responsive", "Real-time messaging", "Analytics tracking"}
        ),
        embed_code_template=WEBSITE_EMBED_TEMPLATE,
    ),
    ChannelTemplate(
        type=ChannelType.WHATSAPP,
        name="WhatsApp Business",
        description="Connect with customers via WhatsApp Business API",
        icon="💬",
        setup_steps=(
            "Verify your WhatsApp Business account",
            "Generate API credentials",
            "Configure webhook endpoints",
            "Test message delivery",
        ),
        requirements=frozenset(
            {"WhatsApp Business Account", "Verified phone number", "Facebook Business Manager"}
        ),
        features=frozenset(
            {"Rich media support", "Template messages", "Group messaging", "Status tracking"}
        ),
        config_fields=("access_token", "phone_number_id"),
    ),
    ChannelTemplate(
        type=ChannelType.MESSENGER,
        name="Facebook Messenger",
        description="Integrate with Facebook Messenger platform",
        icon="📱",
        setup_steps=(
            "Create Facebook App",
            "Set up Messenger webhook",
            "Generate page access token",
            "Configure app permissions",
        ),
        requirements=frozenset(
            {"Facebook Page", "Facebook Developer Account", "SSL Certificate"}
        ),
        features=frozenset({"Rich cards", "Quick replies", "Persistent menu", "User profiles"}),
        config_fields=("access_token",),
    ),
    ChannelTemplate(
        type=ChannelType.TELEGRAM,
        name="Telegram Bot",
        description="Deploy bot on Telegram messaging platform",
        icon="📬",
        setup_steps=(
            "Create bot with @BotFather",
            "Get bot token",
            "Set webhook URL",
            "Configure bot commands",
        ),
        requirements=frozenset({"Telegram account", "Bot token from @BotFather"}),
        features=frozenset({"Inline keyboards", "File sharing", "Group chats", "Custom commands"}),
        config_fields=("bot_token",),
    ),
    ChannelTemplate(
        type=ChannelType.INSTAGRAM,
        name="Instagram Direct",
        description="Respond to Instagram direct messages",
        icon="📸",
        setup_steps=(
            "Connect Instagram Business account",
            "Enable messaging access",
            "Configure auto-responses",
            "Set up story mentions",
        ),
        requirements=frozenset({"Instagram Business Account", "Facebook Page connection"}),
        features=frozenset(
            {"Story replies", "Image recognition", "Auto-responses", "User insights"}
        ),
        config_fields=("access_token", "page_id"),
    ),
    ChannelTemplate(
        type=ChannelType.SHOPIFY,
        name="Shopify Store",
        description="Integrate the chatbot widget into your Shopify store",
        icon="🛍️",
        setup_steps=(
            "Access your Shopify admin panel",
            "Navigate to Online Store → Themes",
            'Click "Actions" → "Edit code" on your active theme',
            "Open theme.liquid file in Layout section",
            "Paste the widget code before closing </body> tag",
            "Save and test the integration",
        ),
        requirements=frozenset({"Active Shopify store", "Admin permissions"}),
        features=frozenset(
            {"Product recommendations", "Order tracking", "Inventory queries", "Cart recovery"}
        ),
        embed_code_template=SHOPIFY_EMBED_TEMPLATE,
    ),
    ChannelTemplate(
        type=ChannelType.EMAIL,
        name="Email Support",
        description="Handle customer support via email",
        icon="📧",
        setup_steps=(
            "Configure SMTP settings",
            "Set up email templates",
            "Configure auto-responders",
            "Test email delivery",
        ),
        requirements=frozenset({"Email server access", "SMTP credentials"}),
        features=frozenset(
            {"Auto-responses", "Email templates", "Ticket creation", "Follow-up sequences"}
        ),
        config_fields=("smtp_host", "smtp_port", "smtp_username", "smtp_password"),
    ),
    ChannelTemplate(
        type=ChannelType.SMS,
        name="SMS Messaging",
        description="Send and receive SMS messages",
        icon="📱",
        setup_steps=(
            "Choose SMS provider",
            "Configure phone numbers",
            "Set up message routing",
            "Test SMS delivery",
        ),
        requirements=frozenset({"SMS provider account", "Phone number verification"}),
        features=frozenset(
            {"Two-way messaging", "Bulk messaging", "Delivery reports", "Short codes"}
        ),
        config_fields=("account_sid", "auth_token", "phone_number"),
    ),
]

default_registry = ChannelRegistry(_TEMPLATES)
