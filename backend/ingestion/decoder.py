"""Best-effort decoding of UMA ancillary data attached to QuestionInitialized."""

from __future__ import annotations

import re
from typing import Any

_TITLE_RE = re.compile(r"title:\s*(.*?),\s*description:", re.DOTALL)
_DESCRIPTION_RE = re.compile(
    r"description:\s*(.*?)\s*(?:res_data:|,?\s*initializer:|$)", re.DOTALL
)
_RES_DATA_RE = re.compile(r"res_data:\s*((?:p\d+:\s*[0-9.]+\s*,?\s*)+)")
_RES_PAIR_RE = re.compile(r"p(\d+):\s*([0-9.]+)")
_OUTCOME_RE = re.compile(r"p(\d+)\s+(?:corresponds\s+)?to\s+([^,.]+)", re.IGNORECASE)
_INITIALIZER_RE = re.compile(r"initializer:\s*(?:0x)?([0-9a-fA-F]{40})")


def _to_text(raw: str) -> str | None:
    candidate = raw.strip()
    if candidate[:2].lower() != "0x":
        return candidate or None
    try:
        return bytes.fromhex(candidate[2:]).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None


def parse_ancillary_text(text: str) -> dict[str, Any]:
    """Split the ``q: title: ..., description: ... res_data: ...`` layout."""
    parsed: dict[str, Any] = {"text": text}

    title = _TITLE_RE.search(text)
    if title:
        parsed["title"] = title.group(1).strip()

    description = _DESCRIPTION_RE.search(text)
    if description:
        parsed["description"] = description.group(1).strip()

    res_data = _RES_DATA_RE.search(text)
    if res_data:
        parsed["res_data"] = {
            f"p{index}": value.rstrip(".") for index, value in _RES_PAIR_RE.findall(res_data.group(1))
        }

    outcomes = {
        f"p{index}": label.strip() for index, label in _OUTCOME_RE.findall(text)
    }
    if outcomes:
        parsed["outcomes"] = outcomes

    initializer = _INITIALIZER_RE.search(text)
    if initializer:
        parsed["initializer"] = "0x" + initializer.group(1).lower()

    return parsed


def decode_ancillary_data(raw: str | None) -> dict[str, Any] | None:
    """Decode ancillary data into a structured dict.

    ``0x`` payloads are hex-decoded first; anything else is parsed as text.
    Returns None for missing or blank payloads, malformed ``0x`` hex and bytes
    that are not UTF-8; never raises.
    """
    if not raw or not isinstance(raw, str):
        return None
    text = _to_text(raw)
    if text:
        text = text.replace("\x00", "").strip()
    if not text:
        return None
    return parse_ancillary_text(text)
