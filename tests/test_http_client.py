"""Tests for the synchronous HTTP helpers."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from common import http_client
from common.http_client import robust_get


@pytest.fixture(autouse=True)
def _clean_cache():
    http_client.clear_cache()
    yield
    http_client.clear_cache()


def _response(status, text, headers=None):
    response = MagicMock()
    response.status_code = status
    response.text = text
    response.headers = headers or {}
    return response


class TestRobustGet:
    @patch("common.http_client.requests.get")
    def test_success_is_cached(self, mock_get):
        mock_get.return_value = _response(200, "{}", {"Content-Type": "application/json"})
        assert robust_get("https://maps.test/a.json") == (200, {"Content-Type": "application/json"}, "{}")
        assert robust_get("https://maps.test/a.json")[0] == 200
        assert mock_get.call_count == 1
        assert mock_get.call_args.kwargs["headers"]["User-Agent"].startswith("specload/")

    @patch("common.http_client.requests.get")
    def test_server_errors_not_cached(self, mock_get):
        mock_get.return_value = _response(503, "busy")
        robust_get("https://maps.test/b.json")
        robust_get("https://maps.test/b.json")
        assert mock_get.call_count == 2

    @patch("common.http_client.requests.get")
    def test_retries_then_reports_failure(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("refused")
        status, headers, text = robust_get("https://maps.test/c.json")
        assert status == 0
        assert headers == {}
        assert "refused" in text
        assert mock_get.call_count == http_client.Constants.HTTP_RETRY_MAX

    @patch("common.http_client.requests.get")
    def test_recovers_after_timeout(self, mock_get):
        mock_get.side_effect = [requests.Timeout(), _response(200, "ok")]
        assert robust_get("https://maps.test/d.json")[0] == 200
