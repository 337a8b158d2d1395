import asyncio
import httpx
import json
import os
from typing import Dict, Any, NamedTuple, Optional
from loguru import logger

DEFAULT_SCRIPT_URL = "https://script.google.com/macros/s/AKfycbzJ_l9Icvc_oWiJ2a8IF9o2B_9Y9EfUmz5oXPN3EkwZKHN1ELWitTA3QFNzHiDiQRTE/exec"

REDIRECT_STATUSES = {301, 302, 303, 307, 308}

# Apps Script serves the sign-in page to clients that don't look like a browser
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.8,*/*;q=0.7",
    "Accept-Language": "en-US,en;q=0.9",
}

class RelayError(Exception):
    """Forwarding to the Apps Script endpoint failed."""

class RelayTimeout(RelayError):
    """The redirect chain did not finish before the deadline."""

class TooManyRedirectsError(RelayError):
    """The redirect chain was longer than the hop budget."""

class RelayResponse(NamedTuple):
    status_code: int
    body: str

class ScriptRelay:
    """Forwards submissions to Google Apps Script, following its redirects by hand.

    Apps Script always answers with a redirect to a googleusercontent.com URL.
    Letting the HTTP client follow it lands on the Google sign-in page, so
    every hop is issued here as a plain browser-like GET instead.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_redirects: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or os.getenv("GOOGLE_SCRIPT_URL", DEFAULT_SCRIPT_URL)
        self.max_redirects = max_redirects if max_redirects is not None else int(os.getenv("RELAY_MAX_REDIRECTS", "5"))
        self.timeout = timeout if timeout is not None else float(os.getenv("RELAY_TIMEOUT_SECONDS", "10"))
        self._transport = transport

    def build_url(self, payload: Dict[str, Any]) -> httpx.URL:
        """Attach the serialized payload as ?payload=... (a GET body would not survive the redirect)."""
        return httpx.URL(self.url).copy_merge_params({"payload": json.dumps(payload)})

    async def forward(self, payload: Dict[str, Any]) -> RelayResponse:
        """
        Relay a sanitized payload and return the final response of the redirect chain.

        Raises:
            RelayTimeout: the whole chain took longer than the timeout
            TooManyRedirectsError: more than max_redirects redirects
            RelayError: any other transport failure
        """
        try:
            return await asyncio.wait_for(self._follow(self.build_url(payload)), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise RelayTimeout(f"No final response within {self.timeout:g}s")
        except httpx.TimeoutException as e:
            raise RelayTimeout(f"{type(e).__name__} while contacting Apps Script")
        except httpx.HTTPError as e:
            raise RelayError(f"{type(e).__name__}: {e}")

    async def _follow(self, url: httpx.URL) -> RelayResponse:
        remaining = self.max_redirects

        async with httpx.AsyncClient(
            headers=BROWSER_HEADERS,
            follow_redirects=False,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            while True:
                response = await client.get(url)
                location = response.headers.get("location")

                if response.status_code not in REDIRECT_STATUSES or not location:
                    logger.info(f"Apps Script responded {response.status_code} ({len(response.content)} bytes)")
                    return RelayResponse(response.status_code, response.text)

                if remaining <= 0:
                    raise TooManyRedirectsError(f"Gave up after {self.max_redirects} redirects")
                remaining -= 1

                # Relative locations resolve against the current hop
                url = url.join(location)
                logger.debug(f"Following {response.status_code} redirect to {url.host}")
