from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from app.core.config import Settings, get_settings
from app.models import EventStream


class BitqueryError(RuntimeError):
    """Raised when Bitquery cannot be reached or answers with an error."""


EVENTS_QUERY = """
query PolymarketEvents(
  $network: evm_network!
  $contract: String!
  $event: String!
  $limit: Int!
) {
  EVM(dataset: combined, network: $network) {
    Events(
      where: {
        LogHeader: { Address: { is: $contract } }
        Log: { Signature: { Name: { is: $event } } }
      }
      limit: { count: $limit }
      orderBy: { descending: Block_Time }
    ) {
      Block { Time Number }
      Transaction { Hash }
      Arguments {
        Name
        Type
        Value {
          ... on EVM_ABI_Integer_Value_Arg { integer }
          ... on EVM_ABI_Address_Value_Arg { address }
          ... on EVM_ABI_String_Value_Arg { string }
          ... on EVM_ABI_BigInt_Value_Arg { bigInteger }
          ... on EVM_ABI_Bytes_Value_Arg { hex }
          ... on EVM_ABI_Boolean_Value_Arg { bool }
        }
      }
    }
  }
}
"""

EVENT_SIGNATURES: dict[EventStream, str] = {
    EventStream.TOKEN_REGISTERED: "TokenRegistered",
    EventStream.ORDER_FILLED: "OrderFilled",
    EventStream.CONDITION_PREPARATION: "ConditionPreparation",
    EventStream.QUESTION_INITIALIZED: "QuestionInitialized",
}


class BitqueryClient:
    """Async wrapper around the Bitquery streaming GraphQL API."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        api_url: str | None = None,
        oauth_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api_url = api_url or str(self.settings.bitquery_api_url)
        self.oauth_token = oauth_token if oauth_token is not None else self.settings.bitquery_oauth_token
        if not self.oauth_token:
            logger.warning("Bitquery OAuth token is not configured; requests will be rejected")
        self.contracts: dict[EventStream, str] = {
            EventStream.TOKEN_REGISTERED: self.settings.ctf_exchange_address,
            EventStream.ORDER_FILLED: self.settings.ctf_exchange_address,
            EventStream.CONDITION_PREPARATION: self.settings.conditional_tokens_address,
            EventStream.QUESTION_INITIALIZED: self.settings.uma_adapter_address,
        }
        self.client = httpx.AsyncClient(
            timeout=timeout or self.settings.bitquery_timeout_seconds,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.oauth_token:
            headers["Authorization"] = f"Bearer {self.oauth_token}"
        return headers

    def _variables(self, stream: EventStream, limit: int) -> dict[str, Any]:
        return {
            "network": self.settings.bitquery_network,
            "contract": self.contracts[stream],
            "event": EVENT_SIGNATURES[stream],
            "limit": limit,
        }

    async def fetch_events(self, stream: EventStream, limit: int) -> list[dict[str, Any]]:
        """Fetch up to ``limit`` of the most recent events for ``stream``."""
        variables = self._variables(stream, limit)
        logger.info("Bitquery fetch {} limit={}", variables["event"], limit)
        try:
            response = await self.client.post(
                self.api_url,
                json={"query": EVENTS_QUERY, "variables": variables},
                headers=self._headers(),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise BitqueryError(f"{variables['event']} request failed: {exc}") from exc
        except ValueError as exc:
            raise BitqueryError(f"{variables['event']} returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise BitqueryError(f"{variables['event']} returned an unexpected payload")

        errors = payload.get("errors")
        if errors:
            messages = ", ".join(
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in errors
            )
            raise BitqueryError(f"{variables['event']} query failed: {messages}")

        data = payload.get("data") or {}
        evm = data.get("EVM") or {}
        events = evm.get("Events")
        if events is None:
            return []
        if not isinstance(events, list):
            raise BitqueryError(f"{variables['event']} returned malformed events")
        logger.info("Bitquery returned {} {} events", len(events), variables["event"])
        return events

    async def fetch_token_registered_events(self, limit: int) -> list[dict[str, Any]]:
        return await self.fetch_events(EventStream.TOKEN_REGISTERED, limit)

    async def fetch_order_filled_events(self, limit: int) -> list[dict[str, Any]]:
        return await self.fetch_events(EventStream.ORDER_FILLED, limit)

    async def fetch_condition_preparation_events(self, limit: int) -> list[dict[str, Any]]:
        return await self.fetch_events(EventStream.CONDITION_PREPARATION, limit)

    async def fetch_question_initialized_events(self, limit: int) -> list[dict[str, Any]]:
        return await self.fetch_events(EventStream.QUESTION_INITIALIZED, limit)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "BitqueryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
