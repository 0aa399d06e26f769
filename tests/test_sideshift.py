"""Tests for the SideShift exchange client."""

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest
from swap_scheduler.execution.base import ExchangeError, Quote, ShiftOrder
from swap_scheduler.execution.sideshift import SideShiftClient

QUOTE_JSON = {
    "id": "q-123",
    "depositCoin": "USDC",
    "depositNetwork": "ethereum",
    "settleCoin": "ETH",
    "settleNetwork": "ethereum",
    "depositAmount": "50",
    "settleAmount": "0.0199",
    "rate": "0.000398",
    "expiresAt": "2026-01-01T12:15:00.000Z",
}

SHIFT_JSON = {
    "id": "shift-abc",
    "depositAddress": "0xdeposit",
    "depositCoin": "USDC",
    "depositAmount": "50",
    "settleAddress": "0xsettle",
    "settleAmount": "0.0199",
    "status": "waiting",
}


def _response(payload: object) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode()
    resp.__enter__.return_value = resp
    return resp


def _http_error(code: int, body: object) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(
        "https://sideshift.ai/api/v2/quotes", code, "error", hdrs=None, fp=io.BytesIO(json.dumps(body).encode())
    )


class TestCreateQuote:
    def test_posts_quote_request(self) -> None:
        client = SideShiftClient(api_secret="secret", affiliate_id="aff-1", client_ip="203.0.113.7")
        with patch("urllib.request.urlopen", return_value=_response(QUOTE_JSON)) as mock_urlopen:
            quote = client.create_quote("USDC", "ethereum", "ETH", "ethereum", "50")

        req = mock_urlopen.call_args[0][0]
        assert req.full_url == "https://sideshift.ai/api/v2/quotes"
        assert req.get_method() == "POST"
        assert req.get_header("X-sideshift-secret") == "secret"
        assert req.get_header("X-user-ip") == "203.0.113.7"
        body = json.loads(req.data)
        assert body == {
            "depositCoin": "USDC",
            "depositNetwork": "ethereum",
            "settleCoin": "ETH",
            "settleNetwork": "ethereum",
            "depositAmount": "50",
            "affiliateId": "aff-1",
        }
        assert quote.id == "q-123"
        assert quote.settle_amount == "0.0199"
        assert quote.error is None

    def test_rejected_quote_carries_error(self) -> None:
        client = SideShiftClient()
        error = _http_error(400, {"error": {"message": "Amount too low"}})
        with patch("urllib.request.urlopen", side_effect=error):
            quote = client.create_quote("USDC", "ethereum", "ETH", "ethereum", "1")
        assert quote.id == ""
        assert quote.error is not None
        assert quote.error.code == "400"
        assert quote.error.message == "Amount too low"

    def test_network_error_raises(self) -> None:
        client = SideShiftClient()
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("timed out")):
            with pytest.raises(ExchangeError):
                client.create_quote("USDC", "ethereum", "ETH", "ethereum", "50")

    def test_no_secret_headers_when_unset(self) -> None:
        client = SideShiftClient()
        with patch("urllib.request.urlopen", return_value=_response(QUOTE_JSON)) as mock_urlopen:
            client.create_quote("USDC", "ethereum", "ETH", "ethereum", "50")
        req = mock_urlopen.call_args[0][0]
        assert req.get_header("X-sideshift-secret") is None
        assert "affiliateId" not in json.loads(req.data)


class TestCreateOrder:
    def test_creates_fixed_shift(self) -> None:
        client = SideShiftClient(api_secret="secret")
        with patch("urllib.request.urlopen", return_value=_response(SHIFT_JSON)) as mock_urlopen:
            order = client.create_order("q-123", "0xsettle", "0xrefund")
        req = mock_urlopen.call_args[0][0]
        assert req.full_url == "https://sideshift.ai/api/v2/shifts/fixed"
        assert json.loads(req.data) == {"quoteId": "q-123", "settleAddress": "0xsettle", "refundAddress": "0xrefund"}
        assert order.id == "shift-abc"
        assert order.deposit_address == "0xdeposit"
        assert order.deposit_memo is None
        assert order.status == "waiting"

    def test_deposit_address_with_memo(self) -> None:
        payload = {**SHIFT_JSON, "depositAddress": {"address": "rDeposit", "memo": "12345"}}
        client = SideShiftClient()
        with patch("urllib.request.urlopen", return_value=_response(payload)):
            order = client.create_order("q-123", "0xsettle", "0xsettle")
        assert order.deposit_address == "rDeposit"
        assert order.deposit_memo == "12345"

    def test_http_error_raises_with_message(self) -> None:
        client = SideShiftClient()
        error = _http_error(400, {"error": {"message": "Quote expired"}})
        with patch("urllib.request.urlopen", side_effect=error):
            with pytest.raises(ExchangeError, match="Quote expired"):
                client.create_order("q-123", "0xsettle", "0xsettle")

    def test_missing_order_id_raises(self) -> None:
        client = SideShiftClient()
        with patch("urllib.request.urlopen", return_value=_response({"status": "waiting"})):
            with pytest.raises(ExchangeError, match="no order id"):
                client.create_order("q-123", "0xsettle", "0xsettle")


class TestFromEnv:
    def test_requires_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SIDESHIFT_SECRET", raising=False)
        with pytest.raises(ValueError, match="SIDESHIFT_SECRET"):
            SideShiftClient.from_env()

    def test_reads_secret_and_affiliate(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDESHIFT_SECRET", "s3cret")
        monkeypatch.setenv("SIDESHIFT_AFFILIATE_ID", "aff-9")
        client = SideShiftClient.from_env()
        with patch("urllib.request.urlopen", return_value=_response(QUOTE_JSON)) as mock_urlopen:
            client.create_quote("USDC", "ethereum", "ETH", "ethereum", "50")
        req = mock_urlopen.call_args[0][0]
        assert req.get_header("X-sideshift-secret") == "s3cret"
        assert json.loads(req.data)["affiliateId"] == "aff-9"


class TestModels:
    def test_quote_error_string(self) -> None:
        quote = Quote.from_api({"error": "Pair not supported"})
        assert quote.id == ""
        assert quote.error is not None
        assert quote.error.message == "Pair not supported"

    def test_shift_order_settle_address_object(self) -> None:
        order = ShiftOrder.from_api({"id": "s1", "settleAddress": {"address": "0xsettle"}, "depositMemo": "m"})
        assert order.settle_address == "0xsettle"
        assert order.deposit_memo == "m"
