from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser

from app.domain import BlockProvenance

# Bitquery wraps every ABI argument value in a typed union; the first
# populated member wins.
_VALUE_KEYS = ("string", "address", "bigInteger", "integer", "hex", "bool")


def get_argument_value(arguments: Iterable[Mapping[str, Any]] | None, name: str) -> str | None:
    """Return the value of the named event argument as a string, or None."""
    if not arguments:
        return None
    for argument in arguments:
        if not isinstance(argument, Mapping) or argument.get("Name") != name:
            continue
        value = argument.get("Value")
        if not isinstance(value, Mapping):
            return None
        for key in _VALUE_KEYS:
            candidate = value.get(key)
            if candidate is None or candidate == "":
                continue
            if isinstance(candidate, bool):
                return "true" if candidate else "false"
            return str(candidate)
        return None
    return None


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, TypeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def parse_provenance(raw_event: Mapping[str, Any]) -> BlockProvenance | None:
    """Extract block time, block number and transaction hash from a raw event."""
    block = raw_event.get("Block")
    transaction = raw_event.get("Transaction")
    if not isinstance(block, Mapping) or not isinstance(transaction, Mapping):
        return None

    block_time = _parse_datetime(block.get("Time"))
    block_number = parse_int(block.get("Number"))
    tx_hash = transaction.get("Hash")
    if block_time is None or block_number is None or not tx_hash:
        return None
    return BlockProvenance(
        block_time=block_time,
        block_number=block_number,
        transaction_hash=str(tx_hash),
    )
