import asyncio
import httpx
import os
from typing import Optional
from loguru import logger

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

class TurnstileVerifier:
    """Cloudflare Turnstile token verification (open mode when no secret is configured)."""

    def __init__(self, secret: Optional[str] = None, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.secret = secret if secret is not None else os.getenv("TURNSTILE_SECRET_KEY", "")
        self.url = SITEVERIFY_URL
        self.timeout = timeout
        self._transport = transport

        if not self.secret:
            logger.warning("No Turnstile secret provided, human verification disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> bool:
        """
        Verify a Turnstile token with Cloudflare.

        Args:
            token: Token produced by the widget on the landing page
            remote_ip: Client IP, forwarded as a hint when known

        Returns:
            True only if Cloudflare reports success. Timeouts, transport
            errors and malformed replies all count as failure.
        """
        if not self.enabled:
            return True

        if not token or not isinstance(token, str):
            logger.info("Turnstile token missing")
            return False

        data = {"secret": self.secret, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            result = await asyncio.wait_for(self._siteverify(data), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Turnstile verification timed out after {self.timeout:g}s")
            return False
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Turnstile verification request failed: {type(e).__name__}")
            return False

        success = isinstance(result, dict) and result.get("success") is True
        if not success:
            codes = result.get("error-codes", []) if isinstance(result, dict) else []
            logger.info(f"Turnstile rejected token: {codes}")
        return success

    async def _siteverify(self, data):
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, data=data)
            return response.json()
