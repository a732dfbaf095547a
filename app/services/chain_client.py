"""Async HTTP client for the chain RPC."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from app.config import settings
from app.schemas.transaction import Balance, Transaction

logger = logging.getLogger(__name__)


class ChainGatewayError(Exception):
    """Transport or protocol failure talking to the chain RPC."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ChainClient:
    """
    Read-only wrapper around the chain RPC.

    Every call reflects live chain state: no caching and no retries.
    Retrying is left to the reconciliation layer.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client from settings unless overridden."""
        self.base_url = (base_url or settings.CHAIN_RPC_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CHAIN_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str) -> tuple[int, Any]:
        """
        GET a path and decode the JSON body.

        Returns:
            Tuple of (status_code, body); body is None for 404

        Raises:
            ChainGatewayError: On transport errors, non-2xx responses other
                than 404, or undecodable bodies
        """
        try:
            response = await self._get_client().get(path)
        except httpx.HTTPError as e:
            logger.warning(f"Chain RPC request failed: GET {path} - {e}")
            raise ChainGatewayError(f"Chain RPC unreachable: {e}") from e

        if response.status_code == 404:
            return 404, None

        if response.is_error:
            logger.warning(f"Chain RPC error: GET {path} -> {response.status_code}")
            raise ChainGatewayError(
                f"Chain RPC returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.status_code, response.json()
        except ValueError as e:
            raise ChainGatewayError(f"Invalid JSON from chain RPC: {e}") from e

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        """
        Fetch a transaction by hash.

        Args:
            tx_hash: Transaction hash

        Returns:
            Normalized transaction, or None if the chain does not know it yet

        Raises:
            ChainGatewayError: If the RPC fails or returns a malformed body
        """
        _, body = await self._get_json(f"/tx/{tx_hash}")
        if body is None:
            logger.debug(f"Transaction not found on chain: {tx_hash}")
            return None

        if not isinstance(body, dict):
            raise ChainGatewayError("Unexpected transaction payload from chain RPC")

        try:
            return Transaction.from_rpc(body, tx_hash=tx_hash)
        except ValidationError as e:
            raise ChainGatewayError(f"Malformed transaction payload: {e}") from e

    async def get_balance(self, address: str) -> Balance:
        """
        Get the spendable balance of an address.

        Args:
            address: Chain address

        Returns:
            Balance with decimal and raw values

        Raises:
            ChainGatewayError: If the RPC fails or the address is unknown
        """
        status_code, body = await self._get_json(f"/balance/{address}")
        if body is None or not isinstance(body, dict):
            raise ChainGatewayError(
                f"No balance available for {address}",
                status_code=status_code,
            )

        try:
            return Balance(
                address=address,
                balance=body.get("balance"),
                balance_raw=str(body.get("balance_raw", "")),
            )
        except ValidationError as e:
            raise ChainGatewayError(f"Malformed balance payload: {e}") from e

    async def get_address_transactions(self, address: str, limit: int = 50) -> list[Transaction]:
        """
        List recent transactions of an address.

        Args:
            address: Chain address
            limit: Maximum number of transactions

        Returns:
            Transactions as reported by the RPC; empty if the address is unknown
        """
        _, body = await self._get_json(f"/transactions/{address}?limit={limit}")
        if not body:
            return []

        items = body.get("transactions", []) if isinstance(body, dict) else body
        try:
            return [Transaction.from_rpc(item) for item in items if isinstance(item, dict)]
        except ValidationError as e:
            raise ChainGatewayError(f"Malformed transaction list: {e}") from e


# Global chain client instance
chain_client = ChainClient()
