"""
KnowledgeGateway tests.

All HTTP goes through an injected fake requests.Session; backoff sleeps are
patched out.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from worksite.integrations.knowledge_gateway import KnowledgeGateway, get_gateway


def _response(status_code=200, body=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    resp.text = text
    return resp


@pytest.fixture()
def http():
    return MagicMock(spec=requests.Session)


@pytest.fixture()
def gateway(http):
    return KnowledgeGateway(http, base_url="https://kb.test/", api_key="secret", timeout=5)


@pytest.fixture(autouse=True)
def _no_sleep():
    with patch("worksite.integrations.knowledge_gateway.time.sleep") as sleep:
        yield sleep


class TestPushContent:

    def test_success_sends_put_with_api_key(self, gateway, http):
        http.request.return_value = _response(200, {"code": 100})

        result = gateway.push_content("kb_1", "hello")

        assert result.ok
        assert result.data == {"code": 100}
        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        assert method == "PUT"
        assert url == "https://kb.test/v1/knowledge_base.update"
        assert kwargs["headers"]["X-Api-Key"] == "secret"
        assert kwargs["json"] == {"knowledge_base_id": "kb_1", "content": "hello"}
        assert kwargs["timeout"] == 5
        assert result.payload_hash

    def test_retries_then_succeeds(self, gateway, http, _no_sleep):
        http.request.side_effect = [_response(502, text="bad gateway"), _response(200, {})]

        result = gateway.push_content("kb_1", "hello")

        assert result.ok
        assert http.request.call_count == 2
        _no_sleep.assert_called_once_with(1)

    def test_gives_up_after_retries(self, gateway, http, _no_sleep):
        http.request.return_value = _response(500, text="boom")

        result = gateway.push_content("kb_1", "hello")

        assert not result.ok
        assert result.status_code == 500
        assert "HTTP 500" in result.error
        assert http.request.call_count == 3
        assert [c.args[0] for c in _no_sleep.call_args_list] == [1, 4]
        # backoff is patched out; the elapsed time is measured, not assumed
        assert result.duration_ms < 1000

    def test_network_errors_never_raise(self, gateway, http):
        http.request.side_effect = requests.ConnectionError("refused")

        result = gateway.push_content("kb_1", "hello")

        assert not result.ok
        assert result.status_code is None
        assert "refused" in result.error

    def test_timeout_reported(self, gateway, http):
        http.request.side_effect = requests.Timeout()
        result = gateway.push_content("kb_1", "hello")
        assert result.error == "Request timed out after 5s"

    def test_missing_api_key_short_circuits(self, http):
        gateway = KnowledgeGateway(http, api_key=None)
        result = gateway.push_content("kb_1", "hello")
        assert not result.ok
        http.request.assert_not_called()

    def test_empty_content_rejected(self, gateway, http):
        assert not gateway.push_content("kb_1", "").ok
        http.request.assert_not_called()


class TestCircuitBreaker:

    def test_opens_after_repeated_failures(self, gateway, http):
        http.request.return_value = _response(500)

        gateway.push_content("kb_1", "a")   # 3 failures
        gateway.push_content("kb_1", "b")   # 6 failures
        calls = http.request.call_count

        result = gateway.push_content("kb_1", "c")

        assert not result.ok
        assert "Circuit breaker is open" in result.error
        assert http.request.call_count == calls
        assert not gateway.is_available()

    def test_success_resets_failures(self, gateway, http):
        http.request.side_effect = [_response(500), _response(200, {})]
        gateway.push_content("kb_1", "a")
        assert gateway._cb_state["failures"] == []


class TestFactory:

    def test_from_config(self, app):
        gateway = KnowledgeGateway.from_config(app.config)
        assert gateway.base_url == "https://kb.test"
        assert gateway.api_key == "test-key"

    def test_get_gateway_is_cached_on_app(self, app):
        assert get_gateway(app) is get_gateway(app)
