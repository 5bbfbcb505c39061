"""Tests for the /api/stocks relay."""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from relay import INTERNAL_ERROR, create_app
from schemas import RunConfig

ORIGIN = "https://secret-gateway.example.com/prod/stocks"
KEY = "s3cr3t-key-value"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("API_GATEWAY_URL", ORIGIN)
    monkeypatch.setenv("AWS_API_KEY", KEY)
    return TestClient(create_app(RunConfig()))


def _upstream(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


def _assert_no_leak(resp):
    assert ORIGIN not in resp.text
    assert KEY not in resp.text
    assert "secret-gateway" not in resp.text


class TestRelay:
    @patch("relay.requests.get")
    def test_success_relays_body_verbatim(self, mock_get, client):
        body = [{"ticker": "7203", "name": "Toyota Motor", "sector": "Automobiles",
                 "pbr": 1.1, "roe": 0.12, "marketCap": 2.5e11}]
        mock_get.return_value = _upstream(payload=body)
        resp = client.get("/api/stocks")
        assert resp.status_code == 200
        assert resp.json() == body

    @patch("relay.requests.get")
    def test_forwards_key_header_to_origin(self, mock_get, client):
        mock_get.return_value = _upstream(payload=[])
        client.get("/api/stocks")
        args, kwargs = mock_get.call_args
        assert args[0] == ORIGIN
        assert kwargs["headers"] == {"x-api-key": KEY}
        assert kwargs["timeout"] == 10

    @patch("relay.requests.get")
    def test_upstream_error_status(self, mock_get, client):
        mock_get.return_value = _upstream(status=403, payload={"message": "Forbidden"})
        resp = client.get("/api/stocks")
        assert resp.status_code == 500
        assert resp.json() == INTERNAL_ERROR
        _assert_no_leak(resp)

    @patch("relay.requests.get")
    def test_upstream_redirect_status(self, mock_get, client):
        mock_get.return_value = _upstream(status=302, payload=[{"ticker": "X"}])
        resp = client.get("/api/stocks")
        assert resp.status_code == 500
        assert resp.json() == INTERNAL_ERROR

    @patch("relay.requests.get")
    def test_transport_exception(self, mock_get, client):
        mock_get.side_effect = requests.ConnectionError(f"Max retries exceeded: {ORIGIN}")
        resp = client.get("/api/stocks")
        assert resp.status_code == 500
        assert resp.json() == INTERNAL_ERROR
        _assert_no_leak(resp)

    @patch("relay.requests.get")
    def test_invalid_upstream_json(self, mock_get, client):
        mock_get.return_value = _upstream(payload=ValueError("Expecting value"))
        resp = client.get("/api/stocks")
        assert resp.status_code == 500

    @patch("relay.requests.get")
    def test_error_log_has_no_secrets(self, mock_get, client, caplog):
        mock_get.side_effect = requests.ConnectionError(f"{ORIGIN} {KEY}")
        with caplog.at_level("ERROR", logger="matrix.relay"):
            client.get("/api/stocks")
        text = " ".join(r.getMessage() for r in caplog.records)
        assert "Relay failed" in text
        assert ORIGIN not in text and KEY not in text

    @patch("relay.requests.get")
    def test_query_parameters_ignored(self, mock_get, client):
        mock_get.return_value = _upstream(payload=[])
        client.get("/api/stocks?ticker=7203")
        args, kwargs = mock_get.call_args
        assert args[0] == ORIGIN
        assert "params" not in kwargs

    def test_missing_origin_is_500(self, monkeypatch):
        monkeypatch.delenv("API_GATEWAY_URL", raising=False)
        client = TestClient(create_app(RunConfig()))
        with patch("relay.requests.get") as mock_get:
            resp = client.get("/api/stocks")
            mock_get.assert_not_called()
        assert resp.status_code == 500
        assert resp.json() == INTERNAL_ERROR

    def test_custom_env_names(self, monkeypatch):
        monkeypatch.setenv("MY_ORIGIN", ORIGIN)
        monkeypatch.setenv("MY_KEY", KEY)
        cfg = RunConfig(relay={"origin_url_env": "MY_ORIGIN", "api_key_env": "MY_KEY",
                               "api_key_header": "x-token"})
        client = TestClient(create_app(cfg))
        with patch("relay.requests.get") as mock_get:
            mock_get.return_value = _upstream(payload=[])
            client.get("/api/stocks")
            assert mock_get.call_args.kwargs["headers"] == {"x-token": KEY}

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_missing_config_file_uses_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setattr("matrix_engine.CONFIG_PATH", tmp_path / "config.yaml")
        monkeypatch.setenv("API_GATEWAY_URL", ORIGIN)
        monkeypatch.delenv("AWS_API_KEY", raising=False)
        client = TestClient(create_app())
        with patch("relay.requests.get") as mock_get:
            mock_get.return_value = _upstream(payload=[])
            resp = client.get("/api/stocks")
            assert mock_get.call_args.kwargs["headers"] == {"x-api-key": ""}
        assert resp.status_code == 200
