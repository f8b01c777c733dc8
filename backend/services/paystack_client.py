"""
Paystack API client.
Thin wrapper over the transaction initialize/verify endpoints.
Transport failures and timeouts surface as ProviderError; local state is
never touched from here.
"""
import os
import hmac
import hashlib
import logging
import httpx
from typing import Any, Dict, Optional

from services.errors import ProviderError

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
PAYSTACK_TIMEOUT_SECONDS = float(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "15"))


class PaystackClient:
    """Paystack REST client."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else os.getenv("PAYSTACK_SECRET_KEY", "")
        self.base_url = (base_url or PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else PAYSTACK_TIMEOUT_SECONDS
        self.transport = transport
        if not self.secret_key:
            logger.warning("PAYSTACK_SECRET_KEY not set - Paystack calls will be rejected")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            logger.error("Paystack timeout %s %s", method, path)
            raise ProviderError("Payment provider timed out") from e
        except httpx.HTTPError as e:
            logger.error("Paystack transport error %s %s: %s", method, path, e)
            raise ProviderError("Payment provider unreachable") from e

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(f"Payment provider returned invalid JSON ({response.status_code})") from e

        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.error("Paystack API error %s %s: %s", method, path, message)
            raise ProviderError(f"Payment provider error: {message}", provider_status=response.status_code)

        return body.get("data") or {}

    async def initialize(
        self,
        email: str,
        amount_minor: int,
        callback_url: str,
        metadata: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Start a transaction.

        Returns: {reference, authorization_url, access_code}
        """
        data = await self._request(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": amount_minor,
                "callback_url": callback_url,
                "metadata": metadata,
            },
        )
        if not data.get("reference") or not data.get("authorization_url"):
            raise ProviderError("Payment provider returned an incomplete initialize response")

        logger.info("Paystack: transaction initialized reference=%s", data["reference"])
        return {
            "reference": data["reference"],
            "authorization_url": data["authorization_url"],
            "access_code": data.get("access_code"),
        }

    async def verify(self, reference: str) -> Dict[str, Any]:
        """
        Look up a transaction.

        Returns: {status, metadata, amount, raw}
        """
        data = await self._request("GET", f"/transaction/verify/{reference}")
        return {
            "status": (data.get("status") or "").lower(),
            "metadata": data.get("metadata") or {},
            "amount": data.get("amount"),
            "raw": data,
        }

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Check the x-paystack-signature header (HMAC-SHA512 of the raw body)."""
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())


# Singleton instance
paystack_client = PaystackClient()
