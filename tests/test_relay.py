import pytest
import asyncio
import httpx
import json
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.relay import ScriptRelay, RelayError, RelayTimeout, TooManyRedirectsError, BROWSER_HEADERS
from tools.turnstile import TurnstileVerifier, SITEVERIFY_URL

SCRIPT_URL = "https://script.google.com/macros/s/test-deployment/exec"
ECHO_URL = "https://script.googleusercontent.com/macros/echo?user_content_key=abc&lib=xyz"

def run(coro):
    return asyncio.run(coro)

class TestScriptRelay:
    """Test manual redirect following against a fake Apps Script."""

    def setup_method(self):
        self.requests = []

    def _relay(self, handler, **kwargs):
        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)
        return ScriptRelay(url=SCRIPT_URL, transport=httpx.MockTransport(recording), **kwargs)

    def test_payload_sent_as_query_parameter(self):
        relay = self._relay(lambda request: httpx.Response(200, json={"status": "success"}))

        result = run(relay.forward({"action": "landing", "email": "a@b.co"}))

        assert result.status_code == 200
        assert json.loads(result.body) == {"status": "success"}
        request = self.requests[0]
        assert request.method == "GET"
        assert request.content == b""
        assert json.loads(request.url.params["payload"]) == {"action": "landing", "email": "a@b.co"}

    def test_browser_headers(self):
        relay = self._relay(lambda request: httpx.Response(200, text="{}"))

        run(relay.forward({"action": "landing"}))

        headers = self.requests[0].headers
        assert headers["user-agent"] == BROWSER_HEADERS["User-Agent"]
        assert headers["accept"] == BROWSER_HEADERS["Accept"]
        assert headers["accept-language"] == BROWSER_HEADERS["Accept-Language"]

    def test_follows_redirect_chain(self):
        def handler(request):
            if request.url.host == "script.google.com":
                return httpx.Response(302, headers={"Location": ECHO_URL})
            return httpx.Response(200, json={"status": "success", "row": 7})

        result = run(self._relay(handler).forward({"action": "scorecard"}))

        assert result.status_code == 200
        assert json.loads(result.body)["row"] == 7
        assert [r.url.host for r in self.requests] == ["script.google.com", "script.googleusercontent.com"]
        assert str(self.requests[1].url) == ECHO_URL
        assert all(r.method == "GET" for r in self.requests)

    def test_relative_location_resolved(self):
        def handler(request):
            if request.url.path.endswith("/exec"):
                return httpx.Response(307, headers={"Location": "/macros/echo?user_content_key=rel"})
            return httpx.Response(200, text="done")

        result = run(self._relay(handler).forward({"action": "landing"}))

        assert result.body == "done"
        assert str(self.requests[1].url) == "https://script.google.com/macros/echo?user_content_key=rel"

    def test_redirect_budget_allows_max_redirects(self):
        def handler(request):
            hop = len(self.requests)
            if hop <= 5:
                return httpx.Response(302, headers={"Location": f"https://script.googleusercontent.com/hop/{hop}"})
            return httpx.Response(200, text="{}")

        result = run(self._relay(handler, max_redirects=5).forward({"action": "landing"}))

        assert result.status_code == 200
        assert len(self.requests) == 6

    def test_too_many_redirects(self):
        relay = self._relay(lambda request: httpx.Response(302, headers={"Location": SCRIPT_URL}), max_redirects=5)

        with pytest.raises(TooManyRedirectsError):
            run(relay.forward({"action": "landing"}))

        assert len(self.requests) == 6

    def test_redirect_without_location_is_final(self):
        result = run(self._relay(lambda request: httpx.Response(302, text="moved")).forward({"action": "landing"}))

        assert result.status_code == 302
        assert result.body == "moved"

    def test_overall_timeout(self):
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, text="{}")

        relay = ScriptRelay(url=SCRIPT_URL, timeout=0.05, transport=httpx.MockTransport(slow))

        with pytest.raises(RelayTimeout):
            run(relay.forward({"action": "landing"}))

    def test_hop_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(RelayTimeout):
            run(self._relay(handler).forward({"action": "landing"}))

    def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RelayError) as excinfo:
            run(self._relay(handler).forward({"action": "landing"}))

        assert "ConnectError" in str(excinfo.value)
        assert not isinstance(excinfo.value, RelayTimeout)

class TestTurnstileVerifier:
    """Test Cloudflare Turnstile verification."""

    def setup_method(self):
        self.requests = []

    def _verifier(self, handler, secret="s3cret"):
        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)
        return TurnstileVerifier(secret=secret, transport=httpx.MockTransport(recording))

    def test_open_mode(self):
        verifier = self._verifier(lambda request: httpx.Response(200, json={"success": False}), secret="")

        assert verifier.enabled is False
        assert run(verifier.verify(None)) is True
        assert self.requests == []

    def test_success(self):
        verifier = self._verifier(lambda request: httpx.Response(200, json={"success": True}))

        assert run(verifier.verify("tok", "203.0.113.9")) is True

        request = self.requests[0]
        assert request.method == "POST"
        assert str(request.url) == SITEVERIFY_URL
        form = dict(pair.split("=", 1) for pair in request.content.decode().split("&"))
        assert form == {"secret": "s3cret", "response": "tok", "remoteip": "203.0.113.9"}

    def test_remote_ip_optional(self):
        verifier = self._verifier(lambda request: httpx.Response(200, json={"success": True}))

        run(verifier.verify("tok"))

        assert "remoteip" not in self.requests[0].content.decode()

    def test_rejected(self):
        verifier = self._verifier(
            lambda request: httpx.Response(200, json={"success": False, "error-codes": ["invalid-input-response"]})
        )

        assert run(verifier.verify("tok")) is False

    def test_missing_token(self):
        verifier = self._verifier(lambda request: httpx.Response(200, json={"success": True}))

        assert run(verifier.verify("")) is False
        assert self.requests == []

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        assert run(self._verifier(handler).verify("tok")) is False

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert run(self._verifier(handler).verify("tok")) is False

    def test_overall_timeout(self):
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"success": True})

        verifier = TurnstileVerifier(secret="s3cret", timeout=0.05, transport=httpx.MockTransport(slow))

        assert run(verifier.verify("tok")) is False

    def test_non_json_reply(self):
        verifier = self._verifier(lambda request: httpx.Response(502, text="<html>Bad gateway</html>"))

        assert run(verifier.verify("tok")) is False

if __name__ == "__main__":
    # Run tests
    pytest.main([__file__, "-v"])
