"""Per-stream field sets that parametrize the generic event processor."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from app import crud
from app.domain import (
    ConditionPreparation,
    OrderFill,
    QuestionInitialization,
    TokenRegistration,
)
from app.models import EventStream

from .decoder import decode_ancillary_data
from .normalize import get_argument_value, parse_int, parse_provenance

Decoder = Callable[[str | None], dict[str, Any] | None]
Transform = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True, slots=True)
class StreamDefinition:
    """Describe how raw events of one stream become stored records.

    ``fields`` maps record attributes to event argument names. An event
    missing any attribute listed in ``required`` is skipped. ``defaults``
    fill absent optional values and ``transforms`` compute an attribute from
    the extracted values (parsing or decoding).
    """

    stream: EventStream
    label: str
    record_type: type
    fields: Mapping[str, str]
    required: tuple[str, ...]
    write: Callable[[Session, Any], Any]
    defaults: Mapping[str, Any] = field(default_factory=dict)
    transforms: Mapping[str, Transform] = field(default_factory=dict)

    def build_record(self, raw_event: Mapping[str, Any]) -> Any | None:
        """Return the normalized record, or None when the event must be skipped."""
        arguments = raw_event.get("Arguments") if isinstance(raw_event, Mapping) else None
        values: dict[str, Any] = {
            attribute: get_argument_value(arguments, argument_name)
            for attribute, argument_name in self.fields.items()
        }
        if any(values.get(attribute) is None for attribute in self.required):
            return None

        provenance = parse_provenance(raw_event)
        if provenance is None:
            return None

        for attribute, default in self.defaults.items():
            if values.get(attribute) is None:
                values[attribute] = default
        for attribute, transform in self.transforms.items():
            values[attribute] = transform(values)

        return self.record_type(**values, provenance=provenance)


def _safe_decode(decoder: Decoder) -> Transform:
    def _transform(values: dict[str, Any]) -> dict[str, Any] | None:
        payload = values.get("ancillary_data")
        if not payload:
            return None
        try:
            return decoder(payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Ancillary data decode failed for question {}: {}", values.get("question_id"), exc)
            return None

    return _transform


def build_stream_definitions(
    decoder: Decoder = decode_ancillary_data,
) -> dict[EventStream, StreamDefinition]:
    return {
        EventStream.TOKEN_REGISTERED: StreamDefinition(
            stream=EventStream.TOKEN_REGISTERED,
            label="TokenRegistered",
            record_type=TokenRegistration,
            fields={
                "condition_id": "conditionId",
                "token0": "token0",
                "token1": "token1",
            },
            required=("condition_id", "token0"),
            write=crud.insert_token_registration,
        ),
        EventStream.ORDER_FILLED: StreamDefinition(
            stream=EventStream.ORDER_FILLED,
            label="OrderFilled",
            record_type=OrderFill,
            fields={
                "order_hash": "orderHash",
                "maker": "maker",
                "taker": "taker",
                "maker_asset_id": "makerAssetId",
                "taker_asset_id": "takerAssetId",
                "maker_amount_filled": "makerAmountFilled",
                "taker_amount_filled": "takerAmountFilled",
                "fee": "fee",
            },
            required=("order_hash", "maker", "taker", "maker_asset_id", "taker_asset_id"),
            defaults={"maker_amount_filled": "0", "taker_amount_filled": "0"},
            write=crud.insert_order_fill,
        ),
        EventStream.CONDITION_PREPARATION: StreamDefinition(
            stream=EventStream.CONDITION_PREPARATION,
            label="ConditionPreparation",
            record_type=ConditionPreparation,
            fields={
                "condition_id": "conditionId",
                "question_id": "questionId",
                "outcome_slot_count": "outcomeSlotCount",
                "oracle": "oracle",
            },
            # outcomeSlotCount and oracle stay optional; partial rows are kept.
            required=("condition_id", "question_id"),
            transforms={"outcome_slot_count": lambda values: parse_int(values.get("outcome_slot_count"))},
            write=crud.insert_condition_preparation,
        ),
        EventStream.QUESTION_INITIALIZED: StreamDefinition(
            stream=EventStream.QUESTION_INITIALIZED,
            label="QuestionInitialized",
            record_type=QuestionInitialization,
            fields={
                "question_id": "questionID",
                "request_timestamp": "requestTimestamp",
                "creator": "creator",
                "ancillary_data": "ancillaryData",
                "reward_token": "rewardToken",
                "reward": "reward",
                "proposal_bond": "proposalBond",
            },
            required=("question_id",),
            transforms={"ancillary_data_decoded": _safe_decode(decoder)},
            write=crud.insert_question_initialization,
        ),
    }
