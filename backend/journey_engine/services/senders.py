"""
Message rendering and the channel-sender seam.

Delivery itself belongs to the messaging integrations. The engine renders a
node's template for a contact and hands the result to a ChannelSender; any
exception coming back is a DispatchError as far as the run is concerned.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

from journey_engine.services.errors import DispatchError

logger = logging.getLogger(__name__)

# {{ contact.first_name }}, {{ journey.name }}, {{ opt_out_url }} ...
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")


@dataclass
class RenderedMessage:
    channel: str
    body: str
    subject: Optional[str] = None


def render_template(source: Optional[str], context: dict) -> str:
    if not source:
        return ""
    if "{{" in PLACEHOLDER_PATTERN.sub("", source):
        raise DispatchError("Template rendering failed: unclosed placeholder")

    def replace_placeholder(match):
        value = context
        for part in match.group(1).split("."):
            if not isinstance(value, dict) or part not in value:
                raise DispatchError(f"Template rendering failed: unknown placeholder '{match.group(1)}'")
            value = value[part]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(replace_placeholder, source)


def render_message(node, context: dict) -> RenderedMessage:
    return RenderedMessage(
        channel=node.channel,
        subject=render_template(node.subject, context) if node.channel == "email" else None,
        body=render_template(node.body, context),
    )


class ChannelSender:
    """Interface for the external delivery integrations."""

    async def send(self, channel: str, contact_id: str, message: RenderedMessage) -> None:
        raise NotImplementedError


class LoggingChannelSender(ChannelSender):
    """Development fallback used when no delivery integration is configured: logs instead of sending."""

    async def send(self, channel: str, contact_id: str, message: RenderedMessage) -> None:
        if channel not in ("email", "sms", "whatsapp"):
            raise DispatchError(f"Unsupported channel: {channel}", channel=channel)
        logger.info(f"[DISPATCH] [{channel.upper()} Dev Fallback] To: {contact_id} Subject: {message.subject} Body: {message.body[:80]}")
