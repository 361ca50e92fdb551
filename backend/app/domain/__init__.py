"""Domain models representing normalized on-chain events."""

from .models import (
    BlockProvenance,
    ConditionPreparation,
    OrderFill,
    QuestionInitialization,
    TokenRegistration,
)

__all__ = [
    "BlockProvenance",
    "ConditionPreparation",
    "OrderFill",
    "QuestionInitialization",
    "TokenRegistration",
]
