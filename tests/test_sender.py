"""Tests for the ClickHouse chunk sender (urlopen is mocked)."""

import io
import logging
import ssl
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from clickhousejson_output.clickhouse.config import ClickHouseJSONConfig, ConfigurationError
from clickhousejson_output.clickhouse.sender import ChunkSender, SendOutcome

CHUNK = b'{"message":"a"}\n{"message":"b"}\n'


def _make_sender(**overrides) -> ChunkSender:
    values = {"http_uri": "http://ch:8123", "table": "logs"}
    values.update(overrides)
    return ChunkSender(ClickHouseJSONConfig(**values))


def _response(status=200, body=b"") -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    return resp


def _http_error(code, body=b"error") -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://ch:8123/", code, "error", {}, io.BytesIO(body))


def test_build_uri_insert():
    sender = _make_sender(database="logs_db", password="p@ss")
    uri = sender.build_uri("INSERT INTO logs FORMAT JSONEachRow")
    assert uri == (
        "http://ch:8123/?database=logs_db&user=default&password=p%40ss"
        "&input_format_skip_unknown_fields=1"
        "&query=INSERT+INTO+logs+FORMAT+JSONEachRow"
    )


def test_send_success_posts_raw_chunk():
    sender = _make_sender()
    with patch("urllib.request.urlopen", return_value=_response(200)) as mock_open:
        result = sender.send(CHUNK, "logs_20240101")

    assert result.outcome is SendOutcome.SUCCESS
    assert result.ok
    assert result.status == 200

    req = mock_open.call_args[0][0]
    assert req.get_method() == "POST"
    assert req.data == CHUNK
    assert "query=INSERT+INTO+logs_20240101+FORMAT+JSONEachRow" in req.full_url


def test_send_accepts_any_2xx():
    sender = _make_sender()
    with patch("urllib.request.urlopen", return_value=_response(204)):
        assert sender.send(CHUNK, "logs").outcome is SendOutcome.SUCCESS


def test_send_503_is_retryable_by_default():
    sender = _make_sender()
    with patch("urllib.request.urlopen", side_effect=_http_error(503, b"overloaded")):
        result = sender.send(CHUNK, "logs")

    assert result.outcome is SendOutcome.RETRYABLE
    assert result.status == 503
    assert "overloaded" in result.message


def test_send_custom_retryable_codes():
    sender = _make_sender(retryable_response_codes=[429, 500])
    with patch("urllib.request.urlopen", side_effect=_http_error(500)):
        assert sender.send(CHUNK, "logs").outcome is SendOutcome.RETRYABLE
    with patch("urllib.request.urlopen", side_effect=_http_error(503)):
        assert sender.send(CHUNK, "logs").outcome is SendOutcome.LOGGED_DROP


def test_send_500_unrecoverable_when_flag_set():
    sender = _make_sender(error_response_as_unrecoverable=True)
    with patch("urllib.request.urlopen", side_effect=_http_error(500, b"Code: 60. Table missing")):
        result = sender.send(CHUNK, "logs")

    assert result.outcome is SendOutcome.UNRECOVERABLE
    assert result.status == 500
    assert "Table missing" in result.message


def test_send_500_logged_and_dropped_when_flag_unset(caplog):
    sender = _make_sender()
    with caplog.at_level(logging.ERROR):
        with patch("urllib.request.urlopen", side_effect=_http_error(500, b"Code: 27. Cannot parse")):
            result = sender.send(CHUNK, "logs")

    assert result.outcome is SendOutcome.LOGGED_DROP
    assert not result.ok
    assert "Cannot parse" in caplog.text
    assert "500" in caplog.text


def test_send_connection_error_is_retryable():
    sender = _make_sender()
    error = urllib.error.URLError(ConnectionRefusedError(111, "Connection refused"))
    with patch("urllib.request.urlopen", side_effect=error):
        result = sender.send(CHUNK, "logs")

    assert result.outcome is SendOutcome.RETRYABLE
    assert result.status is None


def test_classify_without_network():
    sender = _make_sender(error_response_as_unrecoverable=True)
    assert sender.classify(200, "").outcome is SendOutcome.SUCCESS
    assert sender.classify(503, "").outcome is SendOutcome.RETRYABLE
    assert sender.classify(400, "").outcome is SendOutcome.UNRECOVERABLE


def test_http_has_no_ssl_context():
    sender = _make_sender()
    with patch("urllib.request.urlopen", return_value=_response(200)) as mock_open:
        sender.send(CHUNK, "logs")
    assert mock_open.call_args[1]["context"] is None


def test_https_skips_verification_by_default():
    sender = _make_sender(http_uri="https://ch:8443")
    with patch("urllib.request.urlopen", return_value=_response(200)) as mock_open:
        sender.send(CHUNK, "logs")

    context = mock_open.call_args[1]["context"]
    assert context.check_hostname is False
    assert context.verify_mode == ssl.CERT_NONE


def test_https_verifies_when_opted_out():
    sender = _make_sender(http_uri="https://ch:8443", insecure_skip_verify=False)
    with patch("urllib.request.urlopen", return_value=_response(200)) as mock_open:
        sender.send(CHUNK, "logs")

    context = mock_open.call_args[1]["context"]
    assert context.verify_mode == ssl.CERT_REQUIRED


def test_request_timeout_passed_through():
    sender = _make_sender(request_timeout=12.5)
    with patch("urllib.request.urlopen", return_value=_response(200)) as mock_open:
        sender.send(CHUNK, "logs")
    assert mock_open.call_args[1]["timeout"] == 12.5


def test_health_check_ok():
    sender = _make_sender()
    with patch("urllib.request.urlopen", return_value=_response(200, b"logs\n")) as mock_open:
        sender.health_check()

    req = mock_open.call_args[0][0]
    assert req.get_method() == "GET"
    assert req.full_url.endswith("&query=SHOW+TABLES")


def test_health_check_connection_refused():
    sender = _make_sender()
    error = urllib.error.URLError(ConnectionRefusedError(111, "Connection refused"))
    with patch("urllib.request.urlopen", side_effect=error):
        with pytest.raises(ConfigurationError, match="connection refused"):
            sender.health_check()


def test_health_check_unreachable():
    sender = _make_sender()
    with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("Name or service not known")):
        with pytest.raises(ConfigurationError, match="Couldn't connect"):
            sender.health_check()


def test_health_check_non_200():
    sender = _make_sender()
    with patch("urllib.request.urlopen", side_effect=_http_error(516, b"Authentication failed")):
        with pytest.raises(ConfigurationError, match="Authentication failed"):
            sender.health_check()


def test_health_check_2xx_other_than_200():
    sender = _make_sender()
    with patch("urllib.request.urlopen", return_value=_response(204)):
        with pytest.raises(ConfigurationError, match="non-200"):
            sender.health_check()
