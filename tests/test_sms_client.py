"""Tests for relay/sms_client.py module."""
from unittest.mock import MagicMock, patch

import pytest
import requests

from relay.sms_client import SmsApiClient, SmsFetchError, SmsRecord


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def client() -> SmsApiClient:
    return SmsApiClient("https://sms.example/api", "secret", timeout=7)


class TestSmsRecord:
    def test_from_payload_fills_missing_fields(self):
        record = SmsRecord.from_payload({"dt": "2024-01-01 10:00:00", "num": 15550001, "message": None})
        assert record == SmsRecord(dt="2024-01-01 10:00:00", num="15550001", cli="", message="")


class TestFetchLatest:
    @patch("relay.sms_client.requests.get")
    def test_success(self, mock_get, client):
        mock_get.return_value = _response(
            payload={
                "status": "success",
                "data": [
                    {"dt": "t2", "num": "1", "cli": "Bank", "message": "code 1234"},
                    {"dt": "t1", "num": "2", "cli": "Shop", "message": "hello"},
                    "junk",
                ],
            }
        )

        records = client.fetch_latest(10)

        mock_get.assert_called_once_with(
            "https://sms.example/api",
            params={"token": "secret", "records": 10},
            timeout=7,
        )
        assert [r.dt for r in records] == ["t2", "t1"]
        assert records[0].cli == "Bank"

    @patch("relay.sms_client.requests.get")
    def test_empty_data(self, mock_get, client):
        mock_get.return_value = _response(payload={"status": "success", "data": []})
        assert client.fetch_latest(5) == []

    @patch("relay.sms_client.requests.get")
    def test_timeout(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.Timeout()
        with pytest.raises(SmsFetchError, match="timed out"):
            client.fetch_latest(10)

    @patch("relay.sms_client.requests.get")
    def test_connection_error(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(SmsFetchError, match="request failed"):
            client.fetch_latest(10)

    @patch("relay.sms_client.requests.get")
    def test_http_error(self, mock_get, client):
        mock_get.return_value = _response(status_code=502, text="Bad gateway")
        with pytest.raises(SmsFetchError, match="HTTP 502"):
            client.fetch_latest(10)

    @patch("relay.sms_client.requests.get")
    def test_invalid_json(self, mock_get, client):
        mock_get.return_value = _response(payload=ValueError("not json"))
        with pytest.raises(SmsFetchError, match="parse"):
            client.fetch_latest(10)

    @patch("relay.sms_client.requests.get")
    def test_error_status(self, mock_get, client):
        mock_get.return_value = _response(payload={"status": "error", "msg": "bad token"})
        with pytest.raises(SmsFetchError, match="status='error'"):
            client.fetch_latest(10)

    @patch("relay.sms_client.requests.get")
    def test_non_list_data(self, mock_get, client):
        mock_get.return_value = _response(payload={"status": "success", "data": {"dt": "x"}})
        with pytest.raises(SmsFetchError, match="non-list"):
            client.fetch_latest(10)
