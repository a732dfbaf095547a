"""Tests for the chain RPC client."""

from decimal import Decimal

import httpx
import pytest

from app.schemas.transaction import TransactionStatus
from app.services.chain_client import ChainClient, ChainGatewayError


def _client(handler) -> ChainClient:
    return ChainClient(
        base_url="http://chain.test/",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestGetTransaction:
    async def test_confirmed_transaction(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/tx/0xabc"
            return httpx.Response(200, json={
                "tx_hash": "0xabc",
                "status": "confirmed",
                "parsed_tx": {
                    "from": "oct1111111111111111111111111111111111111111111",
                    "to": "oct8UYokvM1DR2QpTD4mncgvRzfM6f9yDuRR1gmBASgTk8d",
                    "amount": "0.5",
                    "message": "register_domain:alice.oct",
                },
            })

        client = _client(handler)
        tx = await client.get_transaction("0xabc")
        await client.aclose()

        assert tx is not None
        assert tx.status == TransactionStatus.CONFIRMED
        assert tx.amount == Decimal("0.5")
        assert tx.message == "register_domain:alice.oct"

    async def test_not_found_returns_none(self):
        client = _client(lambda request: httpx.Response(404, json={"error": "not found"}))
        assert await client.get_transaction("0xmissing") is None

    async def test_server_error_raises(self):
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))

        with pytest.raises(ChainGatewayError) as exc_info:
            await client.get_transaction("0xabc")
        assert exc_info.value.status_code == 502

    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(ChainGatewayError, match="unreachable"):
            await client.get_transaction("0xabc")

    async def test_invalid_json_raises(self):
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ChainGatewayError, match="Invalid JSON"):
            await client.get_transaction("0xabc")

    async def test_non_object_body_raises(self):
        client = _client(lambda request: httpx.Response(200, json=["unexpected"]))
        with pytest.raises(ChainGatewayError):
            await client.get_transaction("0xabc")


class TestGetBalance:
    async def test_balance(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/balance/octA1234567890"
            return httpx.Response(200, json={"balance": "3.25", "balance_raw": 3250000})

        client = _client(handler)
        balance = await client.get_balance("octA1234567890")

        assert balance.balance == Decimal("3.25")
        assert balance.balance_raw == "3250000"

    async def test_unknown_address_raises(self):
        client = _client(lambda request: httpx.Response(404))
        with pytest.raises(ChainGatewayError) as exc_info:
            await client.get_balance("octA1234567890")
        assert exc_info.value.status_code == 404

    async def test_malformed_balance_raises(self):
        client = _client(lambda request: httpx.Response(200, json={"balance": "n/a"}))
        with pytest.raises(ChainGatewayError, match="Malformed"):
            await client.get_balance("octA1234567890")


class TestGetAddressTransactions:
    async def test_lists_transactions(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transactions/octA1234567890"
            assert request.url.params["limit"] == "5"
            return httpx.Response(200, json={"transactions": [
                {"hash": "0x1", "status": "confirmed", "parsed_tx": {"amount": "1"}},
                {"hash": "0x2", "status": "pending"},
            ]})

        client = _client(handler)
        transactions = await client.get_address_transactions("octA1234567890", limit=5)

        assert [tx.hash for tx in transactions] == ["0x1", "0x2"]
        assert transactions[0].is_confirmed is True

    async def test_unknown_address_is_empty(self):
        client = _client(lambda request: httpx.Response(404))
        assert await client.get_address_transactions("octA1234567890") == []


class TestClientLifecycle:
    async def test_reopens_after_close(self):
        client = _client(lambda request: httpx.Response(404))
        await client.get_transaction("0x1")
        await client.aclose()

        assert await client.get_transaction("0x1") is None
        await client.aclose()
