"""
Platform Formatter

Builds the outgoing body for each supported platform from a filtered field
map. One formatter class per platform, looked up through a registry.
"""
from __future__ import annotations

import enum
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.core.exceptions import ErrorCode, TransformError
from app.db.models.queued_delivery import DeliveryPlatform

MAX_DISPLAY_FIELDS = 15
MAX_VALUE_LENGTH = 200
ELLIPSIS = "..."
FOOTER_TEXT = "Notification Relay"
DEFAULT_TITLE = "Notification Received"

# (label, aliases) in display order
FIELD_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Device", ("DeviceName", "device_name", "host", "hostname")),
    ("Customer", ("CustomerName", "customer_name", "customer")),
    ("Qualitative New State", ("QualitativeNewState", "qualitative_new_state")),
    ("Qualitative Old State", ("QualitativeOldState", "qualitative_old_state")),
    ("Status", ("Status", "State", "AlertState", "alert_state")),
    ("Device URI", ("DeviceURI", "device_uri")),
    ("Service", ("AffectedService", "affected_service", "service")),
    ("Task Ident", ("TaskIdent", "task_ident", "taskid")),
    ("Probe URI", ("ProbeURI", "probe_uri")),
    ("N-Central URI", ("NCentralURI", "ncentral_uri")),
    ("Time of State Change", ("TimeOfStateChange", "time_of_state_change")),
    ("Quantitative New State", ("QuantitativeNewState", "quantitative_new_state")),
    ("External Customer ID", ("ExternalCustomerID", "external_customer_id")),
    ("Notification Trigger ID", ("ActiveNotificationTriggerID", "active_notification_trigger_id")),
)

TITLE_ALIASES = ("title", "alert_title", "AlertTitle", "subject", "summary", "DeviceName", "device_name")
DESCRIPTION_ALIASES = ("message", "description", "AlertMessage", "alert_message", "details", "AffectedService")


class StatusColor(str, enum.Enum):
    ATTENTION = "attention"
    GOOD = "good"
    WARNING = "warning"
    DEFAULT = "default"


@dataclass(frozen=True)
class FormattedMessage:
    body: str
    content_type: str


@dataclass(frozen=True)
class DisplayField:
    label: str
    value: str
    key: str


def truncate_value(value: str, limit: int = MAX_VALUE_LENGTH) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - len(ELLIPSIS)] + ELLIPSIS


def _find_key(fields: dict[str, str], alias: str, exclude: set[str] | frozenset[str] = frozenset()) -> str | None:
    """Case-insensitive match on the full key first, then on its last dotted segment"""
    wanted = alias.lower()
    for key in fields:
        if key not in exclude and key.lower() == wanted:
            return key
    for key in fields:
        if key not in exclude and key.rsplit(".", 1)[-1].lower() == wanted:
            return key
    return None


def _first_value(fields: dict[str, str], aliases: tuple[str, ...]) -> str | None:
    for alias in aliases:
        key = _find_key(fields, alias)
        if key is not None and fields[key].strip():
            return fields[key]
    return None


def derive_status_color(fields: dict[str, str]) -> StatusColor:
    """
    Map payload state fields onto a colour class.

    QualitativeNewState wins when it holds a known value; otherwise Status
    and Severity are scanned for substrings.
    """
    qualitative = (_first_value(fields, ("QualitativeNewState",)) or "").strip().lower()
    if qualitative in ("failed", "failure"):
        return StatusColor.ATTENTION
    if qualitative in ("normal", "ok"):
        return StatusColor.GOOD
    if qualitative in ("warning", "warn"):
        return StatusColor.WARNING

    status = (_first_value(fields, ("Status",)) or "").lower()
    severity = (_first_value(fields, ("Severity",)) or "").lower()
    combined = f"{status} {severity}"

    if any(token in combined for token in ("error", "failed", "critical")):
        return StatusColor.ATTENTION
    if "warn" in combined:
        return StatusColor.WARNING
    if any(token in combined for token in ("ok", "success", "resolved", "normal")):
        return StatusColor.GOOD
    return StatusColor.DEFAULT


def collect_display_fields(fields: dict[str, str], limit: int = MAX_DISPLAY_FIELDS) -> list[DisplayField]:
    """Well-known aliases first, then the remaining keys in extraction order"""
    display: list[DisplayField] = []
    consumed: set[str] = set()

    for label, aliases in FIELD_ALIASES:
        if len(display) >= limit:
            break
        for alias in aliases:
            key = _find_key(fields, alias, consumed)
            if key is not None and fields[key].strip():
                display.append(DisplayField(label=label, value=truncate_value(fields[key]), key=key))
                consumed.add(key)
                break

    for key, value in fields.items():
        if len(display) >= limit:
            break
        if key in consumed or value is None:
            continue
        display.append(DisplayField(label=key, value=truncate_value(value), key=key))
        consumed.add(key)

    return display


def _serialize(payload: Any, platform: DeliveryPlatform) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise TransformError(f"Cannot serialise {platform.value} body: {exc}", platform=platform.value) from exc


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlatformFormatter(ABC):
    platform: DeliveryPlatform
    content_type = "application/json"

    def format(self, fields: dict[str, str]) -> FormattedMessage:
        try:
            payload = self.build(fields)
        except TransformError:
            raise
        except (TypeError, ValueError, AttributeError) as exc:
            raise TransformError(str(exc), platform=self.platform.value) from exc
        return FormattedMessage(body=_serialize(payload, self.platform), content_type=self.content_type)

    @abstractmethod
    def build(self, fields: dict[str, str]) -> Any:
        """Return the JSON-serialisable body for this platform"""


class SlackFormatter(PlatformFormatter):
    platform = DeliveryPlatform.SLACK
    colors = {
        StatusColor.ATTENTION: "#ff0000",
        StatusColor.GOOD: "#36a64f",
        StatusColor.WARNING: "#ffaa00",
        StatusColor.DEFAULT: "#36a64f",
    }

    def build(self, fields: dict[str, str]) -> dict:
        attachment: dict[str, Any] = {
            "color": self.colors[derive_status_color(fields)],
            "fields": [
                {"title": f.label, "value": f.value, "short": len(f.value) < 50}
                for f in collect_display_fields(fields)
            ],
            "footer": FOOTER_TEXT,
            "ts": int(_utcnow().timestamp()),
        }
        description = _first_value(fields, DESCRIPTION_ALIASES)
        if description:
            attachment["text"] = truncate_value(description)

        return {
            "text": _first_value(fields, TITLE_ALIASES) or DEFAULT_TITLE,
            "attachments": [attachment],
        }


class DiscordFormatter(PlatformFormatter):
    platform = DeliveryPlatform.DISCORD
    colors = {
        StatusColor.ATTENTION: 0xFF0000,
        StatusColor.GOOD: 0x00FF00,
        StatusColor.WARNING: 0xFFAA00,
        StatusColor.DEFAULT: 0x36A64F,
    }

    def build(self, fields: dict[str, str]) -> dict:
        title = _first_value(fields, TITLE_ALIASES) or DEFAULT_TITLE
        embed: dict[str, Any] = {
            "title": title[:256],
            "color": self.colors[derive_status_color(fields)],
            "fields": [
                {"name": f.label, "value": f.value, "inline": len(f.value) < 50}
                for f in collect_display_fields(fields)
            ],
            "footer": {"text": FOOTER_TEXT},
            "timestamp": _utcnow().isoformat(),
        }
        description = _first_value(fields, DESCRIPTION_ALIASES)
        if description:
            embed["description"] = description[:4096]

        return {"embeds": [embed]}


class TeamsFormatter(PlatformFormatter):
    platform = DeliveryPlatform.TEAMS

    def build(self, fields: dict[str, str]) -> dict:
        body: list[dict[str, Any]] = [
            {
                "type": "TextBlock",
                "text": _first_value(fields, TITLE_ALIASES) or DEFAULT_TITLE,
                "size": "Large",
                "weight": "Bolder",
                "wrap": True,
            }
        ]
        facts = [{"title": f.label, "value": f.value} for f in collect_display_fields(fields)]
        if facts:
            body.append({
                "type": "Container",
                "style": "emphasis",
                "items": [{"type": "FactSet", "facts": facts}],
            })

        return {
            "type": "AdaptiveCard",
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "version": "1.4",
            "msteams": {"width": "Full"},
            "themeColor": derive_status_color(fields).value,
            "body": body,
        }


class GenericWebhookFormatter(PlatformFormatter):
    """Sends the whole filtered map; receivers do their own rendering"""

    platform = DeliveryPlatform.GENERIC_WEBHOOK

    def build(self, fields: dict[str, str]) -> dict:
        return dict(fields)


_FORMATTERS: dict[DeliveryPlatform, PlatformFormatter] = {
    formatter.platform: formatter
    for formatter in (SlackFormatter(), DiscordFormatter(), TeamsFormatter(), GenericWebhookFormatter())
}


def get_formatter(platform: DeliveryPlatform | str) -> PlatformFormatter:
    try:
        return _FORMATTERS[DeliveryPlatform(platform)]
    except (ValueError, KeyError) as exc:
        raise TransformError(
            f"Unsupported platform: {platform}",
            platform=str(platform),
            error_code=ErrorCode.UNSUPPORTED_PLATFORM,
        ) from exc


def format_message(fields: dict[str, str], platform: DeliveryPlatform | str) -> FormattedMessage:
    """Format ``fields`` for ``platform``; raises TransformError on failure"""
    return get_formatter(platform).format(fields)
