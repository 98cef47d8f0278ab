"""AcoustID web service client.

Looks up a Chromaprint fingerprint against ``/v2/lookup`` and returns the
ranked candidates. One request per call; there is no retry.

API documentation: https://acoustid.org/webservice
"""

from __future__ import annotations

import logging
from typing import Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from amusic.settings import settings

logger = logging.getLogger(__name__)

LOOKUP_META = "recordings releasegroups compress"


class AcoustIDLookupError(Exception):
    """Raised when the lookup request fails or the service reports an error."""


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ApiError(_Lenient):
    message: str = "Unknown error"
    code: int | None = None


class Artist(_Lenient):
    id: str
    name: str | None = None


class Release(_Lenient):
    id: str
    title: str | None = None
    medium_count: int | None = None
    track_count: int | None = None


class ReleaseGroup(_Lenient):
    id: str
    title: str | None = None
    type: str | None = None
    artists: list[Artist] = Field(default_factory=list)
    releases: list[Release] = Field(default_factory=list)


class Recording(_Lenient):
    id: str
    title: str | None = None
    duration: float | None = None
    artists: list[Artist] = Field(default_factory=list)
    releasegroups: list[ReleaseGroup] = Field(default_factory=list)


class ResultItem(_Lenient):
    """One AcoustID candidate. ``id`` is the AcoustID itself."""

    id: str
    score: float = 0.0
    recordings: list[Recording] = Field(default_factory=list)


class LookupResult(_Lenient):
    status: Literal["ok", "error"] | None = None
    results: list[ResultItem] = Field(default_factory=list)
    error: ApiError | None = None


class AcoustIDClient:
    """Async client for the AcoustID lookup endpoint.

    Pass an ``httpx.AsyncClient`` to share a connection pool (or a mock
    transport in tests); otherwise one is created and closed by
    :meth:`aclose`.
    """

    def __init__(
        self,
        api_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url or settings.acoustid_api_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.acoustid_timeout_seconds
        )

    async def __aenter__(self) -> AcoustIDClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def lookup(self, fingerprint: str, duration: float, api_key: str) -> LookupResult:
        """Look up a fingerprint.

        Args:
            fingerprint: Compressed Chromaprint fingerprint from fpcalc.
            duration: Track duration in seconds (rounded for the request).
            api_key: AcoustID application API key.

        Returns:
            LookupResult whose ``results`` may be empty when nothing matched.

        Raises:
            AcoustIDLookupError: On transport errors, non-2xx responses,
                unparseable bodies, or an ``error`` status from the service.
        """
        if not api_key:
            raise AcoustIDLookupError("AcoustID API key is required for lookup")

        params = {
            "client": api_key,
            "meta": LOOKUP_META,
            "duration": str(round(duration)),
            "fingerprint": fingerprint,
        }

        try:
            response = await self._http.get(self.api_url, params=params)
        except httpx.HTTPError as exc:
            raise AcoustIDLookupError(f"Error during AcoustID API request: {exc}") from exc

        if response.is_error:
            raise AcoustIDLookupError(
                f"AcoustID API error: {response.status_code} {response.reason_phrase}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise AcoustIDLookupError(f"AcoustID API returned invalid JSON: {exc}") from exc

        try:
            result = LookupResult.model_validate(data)
        except ValidationError as exc:
            raise AcoustIDLookupError(f"Unexpected AcoustID API response: {exc}") from exc

        if result.status == "error":
            message = result.error.message if result.error else "Unknown error"
            raise AcoustIDLookupError(f"AcoustID API returned error: {message}")

        logger.debug("AcoustID lookup returned %d result(s)", len(result.results))
        return result
