"""Common utilities for reading the Next.js ``__NEXT_DATA__`` payload embedded in marketplace pages."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, Optional

NEXT_DATA_SCRIPT_RE = re.compile(
    r'<script[^>]+id="__NEXT_DATA__"[^>]*>(.*?)</script>', re.DOTALL | re.IGNORECASE
)
NUMERIC_CHARS_RE = re.compile(r"[^0-9.,]")
FIRST_INT_RE = re.compile(r"\d+")

LISTING_BASE_URL = "https://willhaben.at/iad"


def extract_next_data(raw_html: str) -> Optional[Dict[str, Any]]:
    if not raw_html:
        return None
    match = NEXT_DATA_SCRIPT_RE.search(raw_html)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def page_props(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not data:
        return {}
    props = data.get("props")
    if not isinstance(props, dict):
        return {}
    page = props.get("pageProps")
    return page if isinstance(page, dict) else {}


def attribute_map(node: Any) -> Dict[str, str]:
    """Flatten ``{"attribute": [{"name": ..., "values": [...]}]}`` into name -> first value."""
    if not isinstance(node, dict):
        return {}
    attributes = node.get("attribute")
    if not isinstance(attributes, list):
        return {}
    result: Dict[str, str] = {}
    for entry in attributes:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name")
        values = entry.get("values")
        if not isinstance(values, list):
            continue
        if name and values and name not in result and values[0] is not None:
            result[str(name)] = str(values[0])
    return result


def first_attr(attrs: Dict[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = attrs.get(name)
        if value:
            return value
    return None


def parse_locale_amount(token: Optional[str]) -> Optional[float]:
    """Parse an Austrian-formatted amount: ``"€ 1.234,56"`` -> ``1234.56``.

    A comma is the decimal separator. Dots are thousands separators unless no
    comma is present and the dot is followed by one or two digits only
    (``"870.5"``), which is the plain decimal format some attributes use.
    """
    if token is None:
        return None
    cleaned = NUMERIC_CHARS_RE.sub("", str(token))
    if not cleaned:
        return None
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".", 1).replace(",", "")
    elif cleaned.count(".") > 1 or re.search(r"\.\d{3}$", cleaned):
        cleaned = cleaned.replace(".", "")
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_decimal_comma(token: Optional[str]) -> Optional[float]:
    if token is None:
        return None
    try:
        value = float(str(token).strip().replace(",", "."))
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_first_int(token: Optional[str]) -> Optional[int]:
    if token is None:
        return None
    match = FIRST_INT_RE.search(str(token))
    return int(match.group(0)) if match else None


def parse_flag(token: Any) -> Optional[bool]:
    if token is None or token == "":
        return None
    if isinstance(token, bool):
        return token
    lowered = str(token).strip().lower()
    if lowered in {"1", "true", "yes"}:
        return True
    if lowered in {"0", "false", "no"}:
        return False
    return None
