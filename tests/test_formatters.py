"""
Tests for platform formatters - app/domain/services/formatters.py
"""
import json

import pytest

from app.core.exceptions import ErrorCode, TransformError
from app.db.models.queued_delivery import DeliveryPlatform
from app.domain.services.formatters import (
    DEFAULT_TITLE,
    FOOTER_TEXT,
    MAX_DISPLAY_FIELDS,
    StatusColor,
    collect_display_fields,
    derive_status_color,
    format_message,
    get_formatter,
    truncate_value,
)


NCENTRAL_FIELDS = {
    "ActiveNotificationTriggerID": "12345",
    "CustomerName": "Acme",
    "DeviceName": "SRV-01",
    "DeviceURI": "10.0.0.5",
    "AffectedService": "Disk Usage",
    "TaskIdent": "998",
    "QualitativeOldState": "Normal",
    "QualitativeNewState": "Failed",
    "TimeOfStateChange": "2024-01-15 12:00:00",
    "ProbeURI": "probe.local",
    "QuantitativeNewState": "97%",
    "ExternalCustomerID": "ext-1",
}


def _body(fields: dict, platform: DeliveryPlatform) -> dict:
    message = format_message(fields, platform)
    assert message.content_type == "application/json"
    return json.loads(message.body)


class TestStatusColor:
    @pytest.mark.unit
    @pytest.mark.parametrize("state, expected", [
        ("Failed", StatusColor.ATTENTION),
        ("failure", StatusColor.ATTENTION),
        ("Normal", StatusColor.GOOD),
        ("OK", StatusColor.GOOD),
        ("Warning", StatusColor.WARNING),
        ("warn", StatusColor.WARNING),
    ])
    def test_qualitative_new_state(self, state: str, expected: StatusColor) -> None:
        assert derive_status_color({"QualitativeNewState": state}) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("fields, expected", [
        ({"Status": "CRITICAL alarm"}, StatusColor.ATTENTION),
        ({"Severity": "error"}, StatusColor.ATTENTION),
        ({"Status": "Warning threshold"}, StatusColor.WARNING),
        ({"Status": "Resolved"}, StatusColor.GOOD),
        ({"Status": "unknown"}, StatusColor.DEFAULT),
        ({}, StatusColor.DEFAULT),
    ])
    def test_status_and_severity_substrings(self, fields: dict, expected: StatusColor) -> None:
        assert derive_status_color(fields) == expected

    @pytest.mark.unit
    def test_unknown_qualitative_state_falls_back_to_status(self) -> None:
        fields = {"QualitativeNewState": "Misconfigured", "Status": "failed"}

        assert derive_status_color(fields) == StatusColor.ATTENTION

    @pytest.mark.unit
    def test_nested_key_matches_on_last_segment(self) -> None:
        fields = {"Alert.QualitativeNewState": "Failed"}

        assert derive_status_color(fields) == StatusColor.ATTENTION


class TestDisplayFields:
    @pytest.mark.unit
    def test_known_fields_come_first_with_labels(self) -> None:
        display = collect_display_fields({"Zeta": "z", "CustomerName": "Acme", "DeviceName": "SRV-01"})

        assert [(d.label, d.value) for d in display] == [
            ("Device", "SRV-01"),
            ("Customer", "Acme"),
            ("Zeta", "z"),
        ]

    @pytest.mark.unit
    def test_alias_lookup_is_case_insensitive(self) -> None:
        display = collect_display_fields({"devicename": "srv"})

        assert display[0].label == "Device"
        assert display[0].key == "devicename"

    @pytest.mark.unit
    def test_blank_alias_value_is_not_used_as_known_field(self) -> None:
        display = collect_display_fields({"DeviceName": "  ", "hostname": "h1"})

        assert display[0].label == "Device"
        assert display[0].value == "h1"

    @pytest.mark.unit
    def test_capped_at_fifteen(self) -> None:
        fields = {f"Field{i}": str(i) for i in range(40)}

        display = collect_display_fields(fields)

        assert len(display) == MAX_DISPLAY_FIELDS
        assert display[-1].key == "Field14"

    @pytest.mark.unit
    def test_long_values_are_truncated(self) -> None:
        display = collect_display_fields({"Note": "x" * 500})

        assert len(display[0].value) == 200
        assert display[0].value.endswith("...")

    @pytest.mark.unit
    def test_truncate_value_leaves_short_values(self) -> None:
        assert truncate_value("short") == "short"
        assert truncate_value("y" * 200) == "y" * 200


class TestSlackFormatter:
    @pytest.mark.unit
    def test_attachment_structure(self) -> None:
        body = _body(NCENTRAL_FIELDS, DeliveryPlatform.SLACK)

        assert body["text"] == "SRV-01"
        attachment = body["attachments"][0]
        assert attachment["color"] == "#ff0000"
        assert attachment["footer"] == FOOTER_TEXT
        assert isinstance(attachment["ts"], int)
        assert attachment["text"] == "Disk Usage"
        titles = [f["title"] for f in attachment["fields"]]
        assert titles[:3] == ["Device", "Customer", "Qualitative New State"]
        assert all(set(f) == {"title", "value", "short"} for f in attachment["fields"])

    @pytest.mark.unit
    def test_default_title_without_title_fields(self) -> None:
        body = _body({"Foo": "bar"}, DeliveryPlatform.SLACK)

        assert body["text"] == DEFAULT_TITLE
        assert "text" not in body["attachments"][0]

    @pytest.mark.unit
    def test_short_flag_depends_on_value_length(self) -> None:
        body = _body({"A": "tiny", "B": "z" * 80}, DeliveryPlatform.SLACK)

        short = {f["title"]: f["short"] for f in body["attachments"][0]["fields"]}
        assert short == {"A": True, "B": False}


class TestDiscordFormatter:
    @pytest.mark.unit
    def test_embed_structure(self) -> None:
        body = _body(NCENTRAL_FIELDS, DeliveryPlatform.DISCORD)

        embed = body["embeds"][0]
        assert embed["title"] == "SRV-01"
        assert embed["color"] == 0xFF0000
        assert embed["footer"] == {"text": FOOTER_TEXT}
        assert embed["description"] == "Disk Usage"
        assert "timestamp" in embed
        assert all(set(f) == {"name", "value", "inline"} for f in embed["fields"])

    @pytest.mark.unit
    def test_good_state_is_green(self) -> None:
        body = _body({"QualitativeNewState": "Normal"}, DeliveryPlatform.DISCORD)

        assert body["embeds"][0]["color"] == 0x00FF00

    @pytest.mark.unit
    def test_title_is_capped(self) -> None:
        body = _body({"title": "t" * 400}, DeliveryPlatform.DISCORD)

        assert len(body["embeds"][0]["title"]) == 256


class TestTeamsFormatter:
    @pytest.mark.unit
    def test_adaptive_card_structure(self) -> None:
        body = _body(NCENTRAL_FIELDS, DeliveryPlatform.TEAMS)

        assert body["type"] == "AdaptiveCard"
        assert body["version"] == "1.4"
        assert body["msteams"] == {"width": "Full"}
        assert body["themeColor"] == "attention"
        assert body["body"][0]["text"] == "SRV-01"
        facts = body["body"][1]["items"][0]["facts"]
        assert facts[0] == {"title": "Device", "value": "SRV-01"}

    @pytest.mark.unit
    def test_no_fields_gives_title_only(self) -> None:
        body = _body({}, DeliveryPlatform.TEAMS)

        assert len(body["body"]) == 1
        assert body["body"][0]["text"] == DEFAULT_TITLE
        assert body["themeColor"] == "default"


class TestGenericWebhookFormatter:
    @pytest.mark.unit
    def test_sends_full_map_uncapped(self) -> None:
        fields = {f"Field{i}": "v" * 300 for i in range(30)}

        body = _body(fields, DeliveryPlatform.GENERIC_WEBHOOK)

        assert body == fields


class TestRegistry:
    @pytest.mark.unit
    @pytest.mark.parametrize("platform", list(DeliveryPlatform))
    def test_every_platform_has_a_formatter(self, platform: DeliveryPlatform) -> None:
        assert get_formatter(platform).platform == platform

    @pytest.mark.unit
    def test_platform_string_is_accepted(self) -> None:
        assert get_formatter("slack").platform == DeliveryPlatform.SLACK

    @pytest.mark.unit
    def test_unknown_platform_raises_transform_error(self) -> None:
        with pytest.raises(TransformError) as exc_info:
            format_message({"A": "1"}, "pagerduty")

        assert exc_info.value.error_code == ErrorCode.UNSUPPORTED_PLATFORM
