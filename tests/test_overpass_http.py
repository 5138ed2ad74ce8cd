"""Unit tests for overpass_http.py: coordinated Overpass API HTTP layer.

Tests cover: HTTP error mapping, response body error detection, retry
logic, error classification, and trace recording.
"""

from unittest.mock import patch, MagicMock

import pytest
import requests

from overpass_http import (
    OverpassHTTPClient,
    OverpassRateLimitError,
    OverpassQueryError,
    overpass_query,
)
from scout_trace import TraceContext, clear_trace, set_trace


# =========================================================================
# Helpers
# =========================================================================

def _mock_response(status_code=200, json_data=None, text=""):
    """Create a mock requests.Response object."""
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.text = text
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("No JSON")
    return resp


def _client(max_retries=0):
    client = OverpassHTTPClient(base_url="http://overpass.test/api/interpreter")
    client.MAX_RETRIES = max_retries
    return client


# =========================================================================
# Success path
# =========================================================================

class TestSuccess:
    def test_posts_query_as_form_data(self):
        client = _client()
        mock_resp = _mock_response(200, {"elements": [{"id": 1}]})
        with patch.object(requests.Session, "post", return_value=mock_resp) as mock_post:
            result = client.query("[out:json];node(1);out;", caller="test", timeout=15)

        assert result == {"elements": [{"id": 1}]}
        args, kwargs = mock_post.call_args
        assert args[0] == "http://overpass.test/api/interpreter"
        assert kwargs["data"] == {"data": "[out:json];node(1);out;"}
        assert kwargs["timeout"] == 15

    def test_base_url_from_env(self, monkeypatch):
        monkeypatch.setenv("OVERPASS_BASE_URL", "http://self-hosted/api/interpreter")
        assert OverpassHTTPClient().base_url == "http://self-hosted/api/interpreter"


# =========================================================================
# HTTP error handling
# =========================================================================

class TestHTTPErrors:
    def test_429_raises_rate_limit_error(self):
        mock_resp = _mock_response(429)
        with patch.object(requests.Session, "post", return_value=mock_resp):
            with pytest.raises(OverpassRateLimitError):
                _client().query("test query", caller="test")

    def test_504_raises_query_error(self):
        mock_resp = _mock_response(504)
        with patch.object(requests.Session, "post", return_value=mock_resp):
            with pytest.raises(OverpassQueryError, match="504"):
                _client().query("test query", caller="test")

    def test_400_raises_query_error(self):
        mock_resp = _mock_response(400)
        with patch.object(requests.Session, "post", return_value=mock_resp):
            with pytest.raises(OverpassQueryError, match="400"):
                _client().query("test query", caller="test")

    def test_non_json_response_raises(self):
        mock_resp = _mock_response(200, json_data=None, text="<html>error</html>")
        with patch.object(requests.Session, "post", return_value=mock_resp):
            with pytest.raises(OverpassQueryError, match="non-JSON"):
                _client().query("test query", caller="test")

    def test_timeout_raises_query_error(self):
        with patch.object(
            requests.Session, "post", side_effect=requests.exceptions.Timeout("timed out")
        ):
            with pytest.raises(OverpassQueryError, match="timeout"):
                _client().query("test query", caller="test")

    def test_connection_error_raises_query_error(self):
        with patch.object(
            requests.Session, "post", side_effect=requests.exceptions.ConnectionError("refused")
        ):
            with pytest.raises(OverpassQueryError, match="request failed"):
                _client().query("test query", caller="test")


# =========================================================================
# Response body error detection
# =========================================================================

class TestResponseBodyErrors:
    def test_rate_limit_in_body(self):
        body = {"osm3s": {"remark": "Too many requests"}, "elements": []}
        with patch.object(requests.Session, "post", return_value=_mock_response(200, body)):
            with pytest.raises(OverpassRateLimitError):
                _client().query("test query", caller="test")

    def test_runtime_error_in_body(self):
        body = {"remark": "runtime error: Query timed out", "elements": []}
        with patch.object(requests.Session, "post", return_value=_mock_response(200, body)):
            with pytest.raises(OverpassQueryError, match="server error"):
                _client().query("test query", caller="test")


# =========================================================================
# Retry logic
# =========================================================================

class TestRetryLogic:
    @patch("overpass_http.time.sleep")
    def test_retries_on_rate_limit(self, mock_sleep):
        client = _client(max_retries=2)

        call_count = 0

        def side_effect(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                return _mock_response(429)
            return _mock_response(200, {"elements": []})

        with patch.object(requests.Session, "post", side_effect=side_effect):
            result = client.query("test query", caller="test")

        assert result == {"elements": []}
        assert call_count == 3
        assert mock_sleep.call_count >= 2  # rate limiter + retry backoff sleeps

    @patch("overpass_http.time.sleep")
    def test_retries_on_504(self, mock_sleep):
        client = _client(max_retries=1)
        responses = [_mock_response(504), _mock_response(200, {"elements": []})]
        with patch.object(requests.Session, "post", side_effect=responses):
            assert client.query("test query", caller="test") == {"elements": []}

    @patch("overpass_http.time.sleep")
    def test_exhausts_retries_and_raises(self, mock_sleep):
        with patch.object(requests.Session, "post", return_value=_mock_response(429)):
            with pytest.raises(OverpassRateLimitError):
                _client(max_retries=1).query("test query", caller="test")

    @patch("overpass_http.time.sleep")
    def test_400_not_retried(self, mock_sleep):
        with patch.object(requests.Session, "post", return_value=_mock_response(400)) as mock_post:
            with pytest.raises(OverpassQueryError, match="400"):
                _client(max_retries=2).query("test query", caller="test")
        assert mock_post.call_count == 1


# =========================================================================
# Retryable error classification
# =========================================================================

class TestIsRetryableError:
    def test_timeout_is_retryable(self):
        e = OverpassQueryError("Overpass request timeout after 30s")
        assert OverpassHTTPClient._is_retryable_error(e) is True

    def test_server_error_is_retryable(self):
        e = OverpassQueryError("Overpass server error in response body: something")
        assert OverpassHTTPClient._is_retryable_error(e) is True

    def test_504_is_retryable(self):
        e = OverpassQueryError("Overpass HTTP 504 [caller=test]")
        assert OverpassHTTPClient._is_retryable_error(e) is True

    def test_400_is_not_retryable(self):
        e = OverpassQueryError("Overpass HTTP 400 [caller=test]")
        assert OverpassHTTPClient._is_retryable_error(e) is False

    def test_parse_error_is_not_retryable(self):
        e = OverpassQueryError("non-JSON response")
        assert OverpassHTTPClient._is_retryable_error(e) is False


# =========================================================================
# Trace recording
# =========================================================================

class TestTraceRecording:
    def test_records_call_under_caller(self):
        ctx = TraceContext(trace_id="t1")
        set_trace(ctx)
        try:
            with patch.object(requests.Session, "post", return_value=_mock_response(200, {"elements": []})):
                _client().query("test query", caller="city_facilities")
        finally:
            clear_trace()

        assert len(ctx.api_calls) == 1
        call = ctx.api_calls[0]
        assert call.service == "overpass"
        assert call.endpoint == "city_facilities"
        assert call.status_code == 200

    def test_records_rate_limit(self):
        ctx = TraceContext(trace_id="t2")
        set_trace(ctx)
        try:
            with patch.object(requests.Session, "post", return_value=_mock_response(429)):
                with pytest.raises(OverpassRateLimitError):
                    _client().query("test query", caller="test")
        finally:
            clear_trace()

        assert ctx.api_calls[0].provider_status == "rate_limit"


# =========================================================================
# Module-level convenience function
# =========================================================================

class TestModuleLevelFunction:
    @patch("overpass_http._client")
    def test_delegates_to_client(self, mock_client):
        mock_client.query.return_value = {"elements": []}
        result = overpass_query("[out:json];", caller="test", timeout=10)

        assert result == {"elements": []}
        mock_client.query.assert_called_once_with(
            "[out:json];", caller="test", timeout=10
        )
