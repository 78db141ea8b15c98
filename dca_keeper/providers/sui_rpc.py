"""
Sui JSON-RPC client.

Async httpx client for the handful of fullnode methods the keeper uses:
event queries, object reads, dynamic fields, coins, gas price, dry runs and
transaction execution. Transport failures are raised as RpcTransientError and
JSON-RPC error objects as RpcResponseError.
"""

import itertools
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..core.recovery.errors import RpcResponseError, RpcTransientError, as_keeper_error
from ..core.recovery.strategies import CircuitBreakerStrategy
from .base import ChainReader

logger = logging.getLogger(__name__)

MAX_OBJECTS_PER_REQUEST = 50


class SuiRpcClient(ChainReader):
    """
    Async client for a Sui fullnode.

    Example usage:
        client = SuiRpcClient("https://fullnode.mainnet.sui.io:443")
        page = await client.query_events("0x...::dca::DCACreatedEvent")
        objects = await client.multi_get_objects([...])
        await client.close()
    """

    name = "sui_rpc"

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        breaker: Optional[CircuitBreakerStrategy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.timeout_s = timeout
        self.breaker = breaker
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SuiRpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Issue one JSON-RPC request, routed through the circuit breaker when configured."""
        if self.breaker is not None:
            return await self.breaker.execute(lambda: self._call(method, params or []))
        return await self._call(method, params or [])

    async def _call(self, method: str, params: List[Any]) -> Any:
        client = await self._get_client()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        try:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPStatusError, httpx.TransportError, httpx.TimeoutException) as e:
            error = as_keeper_error(e, method=method)
            if error is e:
                raise RpcResponseError(f"{method} rejected: {e}", method=method) from e
            raise error from e
        except ValueError as e:
            raise RpcTransientError(f"Malformed RPC response: {e}", method=method) from e

        if "error" in data and data["error"]:
            error = data["error"]
            raise RpcResponseError(
                f"{method} failed: {error.get('message', error)}",
                code=error.get("code"),
                method=method,
            )
        return data.get("result")

    # ---------------------------
    # Provider interface
    # ---------------------------
    async def ready(self) -> bool:
        return bool(self.url)

    async def health_check(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            checkpoint = await self.call("sui_getLatestCheckpointSequenceNumber")
        except (RpcTransientError, RpcResponseError) as e:
            return {"status": "error", "reason": str(e)}
        return {
            "status": "healthy",
            "latest_checkpoint": int(checkpoint),
            "latency_ms": int((time.perf_counter() - started) * 1000),
        }

    # ---------------------------
    # Reads
    # ---------------------------
    async def query_events(
        self,
        event_type: str,
        cursor: Optional[Dict[str, Any]] = None,
        limit: int = 50,
        descending: bool = True,
    ) -> Dict[str, Any]:
        return await self.call(
            "suix_queryEvents",
            [{"MoveEventType": event_type}, cursor, limit, descending],
        )

    async def multi_get_objects(
        self,
        object_ids: List[str],
        show_content: bool = True,
        show_owner: bool = False,
    ) -> List[Dict[str, Any]]:
        if len(object_ids) > MAX_OBJECTS_PER_REQUEST:
            raise ValueError(f"At most {MAX_OBJECTS_PER_REQUEST} objects per request")
        if not object_ids:
            return []
        options = {"showContent": show_content, "showOwner": show_owner, "showType": True}
        return await self.call("sui_multiGetObjects", [object_ids, options])

    async def get_object(self, object_id: str, show_content: bool = True) -> Dict[str, Any]:
        return await self.call(
            "sui_getObject",
            [object_id, {"showContent": show_content, "showOwner": True, "showType": True}],
        )

    async def get_dynamic_field_object(
        self,
        parent_id: str,
        name_type: str,
        name_value: Any,
    ) -> Dict[str, Any]:
        return await self.call(
            "suix_getDynamicFieldObject",
            [parent_id, {"type": name_type, "value": name_value}],
        )

    async def get_reference_gas_price(self) -> int:
        return int(await self.call("suix_getReferenceGasPrice"))

    async def get_coins(
        self,
        owner: str,
        coin_type: str = "0x2::sui::SUI",
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Dict[str, Any]:
        return await self.call("suix_getCoins", [owner, coin_type, cursor, limit])

    # ---------------------------
    # Writes
    # ---------------------------
    async def dry_run(self, tx_bytes_b64: str) -> Dict[str, Any]:
        return await self.call("sui_dryRunTransactionBlock", [tx_bytes_b64])

    async def execute(self, tx_bytes_b64: str, signatures: List[str]) -> Dict[str, Any]:
        return await self.call(
            "sui_executeTransactionBlock",
            [
                tx_bytes_b64,
                signatures,
                {"showEffects": True, "showEvents": True},
                "WaitForLocalExecution",
            ],
        )
