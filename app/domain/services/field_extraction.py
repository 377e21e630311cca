"""
Field Extraction & Filter Engine

Turns a raw inbound payload into a flat, ordered ``dotted.key -> str`` map
and applies include/exclude rules to it.

XML conversion rules:
    - the root element is not part of any key
    - attributes merge into their element's own fields
    - an element holding attributes or children keeps its text under ``_``
    - only genuinely repeated sibling tags become lists
    - namespace URIs are dropped from tag and attribute names

Everything here is pure; nothing touches the database.
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from app.core.exceptions import ParseError

TEST_NOTIFICATION_MARKER = "THIS IS A TEST NOTIFICATION"
TEXT_KEY = "_"
LIST_SEPARATOR = ", "


class FieldFilterRules(Protocol):
    included_fields: Iterable[str]
    excluded_fields: Iterable[str]


@dataclass
class FieldExtractionResult:
    """Outcome of a sample extraction for the filter editor"""

    success: bool
    fields: list[str] = field(default_factory=list)
    extracted: dict[str, str] = field(default_factory=dict)
    error: str | None = None


def is_test_notification(raw_payload: str) -> bool:
    return raw_payload.strip().startswith(TEST_NOTIFICATION_MARKER)


def _local_name(name: str) -> str:
    # "{http://ns}tag" -> "tag"
    if name.startswith("{"):
        return name.rsplit("}", 1)[-1]
    return name


def _element_to_value(element: ET.Element) -> Any:
    """Convert an element into a str (leaf) or a dict (attributes/children)."""
    attributes = {_local_name(k): v for k, v in element.attrib.items()}
    children = list(element)
    text = (element.text or "").strip()

    if not attributes and not children:
        return text

    node: dict[str, Any] = dict(attributes)

    grouped: dict[str, list[Any]] = {}
    for child in children:
        grouped.setdefault(_local_name(child.tag), []).append(_element_to_value(child))

    for key, values in grouped.items():
        if key in node:
            # child tag collides with an attribute of the same name
            node[key] = [node[key], *values]
        elif len(values) == 1:
            node[key] = values[0]
        else:
            node[key] = values

    if text:
        node[TEXT_KEY] = text

    return node


def _flatten(value: Any, prefix: str, out: dict[str, str]) -> None:
    if value is None:
        return

    if isinstance(value, dict):
        for key, child in value.items():
            _flatten(child, f"{prefix}.{key}" if prefix else key, out)
        return

    if isinstance(value, list):
        if all(not isinstance(item, (dict, list)) for item in value):
            out[prefix] = LIST_SEPARATOR.join(str(item) for item in value if item is not None)
            return
        for index, item in enumerate(value):
            _flatten(item, f"{prefix}.{index}", out)
        return

    out[prefix] = str(value)


def parse_xml(raw_payload: str) -> dict[str, Any]:
    """Parse an XML document into a nested tree keyed below the root element"""
    try:
        root = ET.fromstring(raw_payload.strip())
    except ET.ParseError as exc:
        raise ParseError(str(exc), details={"reason": "malformed_xml"}) from exc

    tree = _element_to_value(root)
    if isinstance(tree, str):
        # text-only root: keep its own tag so the value has a key
        return {_local_name(root.tag): tree}
    return tree


def extract(raw_payload: str | bytes) -> dict[str, str]:
    """
    Extract a flat field map from a raw payload.

    Raises:
        ParseError: payload is empty, not the test marker, and not well-formed XML.
    """
    if isinstance(raw_payload, bytes):
        try:
            raw_payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError("payload is not valid UTF-8") from exc

    if raw_payload is None or not raw_payload.strip():
        raise ParseError("payload is empty", details={"reason": "empty_payload"})

    if is_test_notification(raw_payload):
        return {
            "TestNotification": "true",
            "Message": raw_payload.strip(),
        }

    fields: dict[str, str] = {}
    _flatten(parse_xml(raw_payload), "", fields)
    return fields


def filter_fields(
    fields: dict[str, str],
    included_fields: Iterable[str] = (),
    excluded_fields: Iterable[str] = (),
) -> dict[str, str]:
    """Keep a key iff it is not excluded and (no include list or it is included)"""
    included = set(included_fields)
    excluded = set(excluded_fields)

    return {
        key: value
        for key, value in fields.items()
        if key not in excluded and (not included or key in included)
    }


def apply_field_filter(fields: dict[str, str], rules: FieldFilterRules | None) -> dict[str, str]:
    """Apply a stored filter; ``None`` means no filtering"""
    if rules is None:
        return dict(fields)
    return filter_fields(
        fields,
        included_fields=rules.included_fields or (),
        excluded_fields=rules.excluded_fields or (),
    )


def extract_available_fields(sample_payload: str) -> FieldExtractionResult:
    """List the fields a sample payload exposes, never raising on bad input"""
    try:
        extracted = extract(sample_payload)
    except ParseError as exc:
        return FieldExtractionResult(
            success=False,
            error=f"Failed to extract fields: {exc.message}",
        )

    return FieldExtractionResult(
        success=True,
        fields=list(extracted.keys()),
        extracted=extracted,
    )
