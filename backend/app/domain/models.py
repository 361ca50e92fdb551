"""Typed domain representations of normalized on-chain events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class BlockProvenance:
    """Where on chain an event was observed."""

    block_time: datetime
    block_number: int
    transaction_hash: str


@dataclass(slots=True)
class TokenRegistration:
    """Outcome token pair registered for a condition on the exchange."""

    condition_id: str
    token0: str
    token1: str | None
    provenance: BlockProvenance


@dataclass(slots=True)
class OrderFill:
    """Single matched order on the exchange; amounts stay as decimal strings."""

    order_hash: str
    maker: str
    taker: str
    maker_asset_id: str
    taker_asset_id: str
    maker_amount_filled: str
    taker_amount_filled: str
    fee: str | None
    provenance: BlockProvenance


@dataclass(slots=True)
class ConditionPreparation:
    """Condition prepared on the conditional tokens contract for a question."""

    condition_id: str
    question_id: str
    outcome_slot_count: int | None
    oracle: str | None
    provenance: BlockProvenance


@dataclass(slots=True)
class QuestionInitialization:
    """Question registered with the UMA adapter, with its decoded payload."""

    question_id: str
    request_timestamp: str | None
    creator: str | None
    ancillary_data: str | None
    ancillary_data_decoded: dict[str, Any] | None
    reward_token: str | None
    reward: str | None
    proposal_bond: str | None
    provenance: BlockProvenance
