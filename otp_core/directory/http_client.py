import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log

from .base import IdentityDirectory
from .exceptions import (
    DirectoryError,
    DirectoryUnavailableError,
    DirectoryTimeoutError,
    DirectoryAuthError,
)
from .models import LookupFailed, LookupResult, Principal, PrincipalFound, PrincipalMissing

logger = logging.getLogger(__name__)


class PrincipalPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    email: Optional[str] = None
    email_verified: bool = Field(default=False, alias="emailVerified")

    def to_principal(self) -> Principal:
        return Principal(
            uid=self.uid,
            phone_number=self.phone_number,
            email=self.email,
            email_verified=self.email_verified,
        )


class _Missing(DirectoryError):
    """404 from the directory; only meaningful to lookups."""
    pass


class HttpIdentityDirectory(IdentityDirectory):
    """
    Identity directory reached over a JSON HTTP API.

    Endpoints:
    - GET  /principals/lookup?phoneNumber=... | ?email=...  (404 if none)
    - POST /principals
    - PATCH /principals/{uid}

    Features:
    - Automatic retries on network errors and 5xx responses.
    - Bounded per-request timeout.
    - 404 on lookup maps to PrincipalMissing; everything else to LookupFailed.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        headers = {
            "User-Agent": "otp-core-directory-client",
            "Accept": "application/json",
        }
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    def _map_exception(self, exc: Exception) -> DirectoryError:
        """Map httpx exceptions to directory exceptions."""
        if isinstance(exc, httpx.TimeoutException):
            return DirectoryTimeoutError("Request timed out")
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            text = exc.response.text
            if status == 404:
                return _Missing("Principal not found", status_code=status)
            if status in (401, 403):
                return DirectoryAuthError("Unauthorized", status_code=status)
            if status >= 500:
                return DirectoryUnavailableError("Server error", status_code=status, details=text)
            return DirectoryError(f"HTTP {status} Error", status_code=status, details=text)
        if isinstance(exc, httpx.TransportError):
            return DirectoryUnavailableError(f"Failed to connect: {exc}")
        return DirectoryError(f"Unexpected error: {exc}")

    @retry(
        retry=retry_if_exception_type(DirectoryUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Execute request with retries and error handling."""
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise self._map_exception(e) from e
        except ValueError as e:
            raise DirectoryError(f"Invalid JSON from directory: {e}") from e

    async def _lookup(self, params: Dict[str, str]) -> LookupResult:
        try:
            data = await self._request("GET", "/principals/lookup", params=params)
            return PrincipalFound(PrincipalPayload.model_validate(data).to_principal())
        except _Missing:
            return PrincipalMissing()
        except DirectoryError as e:
            logger.warning("Directory lookup failed: %s", e.message)
            return LookupFailed(e)
        except ValueError as e:
            return LookupFailed(DirectoryError(f"Invalid principal payload: {e}"))

    async def lookup_by_phone(self, phone_number: str) -> LookupResult:
        return await self._lookup({"phoneNumber": phone_number})

    async def lookup_by_email(self, email: str) -> LookupResult:
        return await self._lookup({"email": email})

    async def create_principal(
        self,
        phone_number: Optional[str] = None,
        email: Optional[str] = None,
        email_verified: bool = False,
    ) -> Principal:
        body: Dict[str, Any] = {"emailVerified": email_verified}
        if phone_number:
            body["phoneNumber"] = phone_number
        if email:
            body["email"] = email
        data = await self._request("POST", "/principals", json=body)
        return self._parse(data)

    async def mark_email_verified(self, uid: str) -> Principal:
        data = await self._request("PATCH", f"/principals/{uid}", json={"emailVerified": True})
        return self._parse(data)

    @staticmethod
    def _parse(data: Dict[str, Any]) -> Principal:
        try:
            return PrincipalPayload.model_validate(data).to_principal()
        except ValueError as e:
            raise DirectoryError(f"Invalid principal payload: {e}") from e
