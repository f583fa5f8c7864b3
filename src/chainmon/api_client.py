"""
Async HTTP client for the Subscan chain-indexing API.

Provides access to the per-account event listings with:
- Automatic retry with exponential backoff
- Request spacing shared by every caller of one client
- Classification of transport, HTTP and API-envelope errors
"""

import asyncio
import logging
from typing import Optional, TypeVar

import httpx
from pydantic import ValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .models import (
    Context,
    NominationsResponse,
    Response,
    RewardsSlashesResponse,
    TransfersResponse,
)

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=Response)


class ChainAPIError(Exception):
    """Base exception for chain API failures (network, decoding, API errors)."""
    pass


class ChainAPIRateLimitError(ChainAPIError):
    """Raised when rate limited by the API."""
    pass


class ChainAPIClient:
    """
    Async client for the Subscan API.

    One client is shared by every data source, so the request spacing
    applies across all pollers.

    Example:
        async with ChainAPIClient(api_key="...") as client:
            resp = await client.request_transfers(context, row=10, page=1)
            for transfer in resp.data.transfers or []:
                print(transfer.hash)
    """

    TRANSFERS_PATH = "/api/scan/transfers"
    REWARD_SLASH_PATH = "/api/scan/account/reward_slash"
    NOMINATIONS_PATH = "/api/scan/staking/voted"
    DEFAULT_HEADERS = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "User-Agent": "chainmon/0.1 (Account Monitoring)",
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        requests_per_second: float = 2.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the API client.

        Args:
            api_key: Subscan API key (sent as X-API-Key)
            requests_per_second: Maximum request rate across all callers
            timeout: Request timeout in seconds
            transport: Custom httpx transport (used by tests)
        """
        self.api_key = api_key
        self.requests_per_second = requests_per_second
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._last_request_time: float = 0
        self._rate_limit_lock = asyncio.Lock()

    async def __aenter__(self) -> "ChainAPIClient":
        headers = dict(self.DEFAULT_HEADERS)
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rate_limit(self) -> None:
        """Enforce spacing between requests."""
        async with self._rate_limit_lock:
            loop = asyncio.get_running_loop()
            min_interval = 1.0 / self.requests_per_second
            elapsed = loop.time() - self._last_request_time

            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)

            self._last_request_time = loop.time()

    def _handle_response(self, response: httpx.Response) -> dict:
        """
        Check the HTTP status and decode the JSON body.

        Raises:
            ChainAPIRateLimitError: If rate limited (429)
            ChainAPIError: For other HTTP errors or a non-JSON body
        """
        if response.status_code == 429:
            raise ChainAPIRateLimitError("Rate limited by chain API")

        if response.status_code >= 400:
            raise ChainAPIError(
                f"API error {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise ChainAPIError(f"Invalid JSON from {response.url}: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TransportError, ChainAPIRateLimitError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post(self, url: str, body: dict) -> dict:
        """POST with retry on transport errors and rate limits."""
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        await self._rate_limit()

        logger.debug(f"Request: POST {url} {body}")
        response = await self._client.post(url, json=body)
        return self._handle_response(response)

    async def _request(
        self,
        context: Context,
        path: str,
        body: dict,
        response_model: type[ResponseT],
    ) -> ResponseT:
        """
        Send a request for one account and decode the response envelope.

        Raises:
            ChainAPIError: On any failure, after retries are exhausted
        """
        url = f"{context.network.api_host}{path}"
        try:
            payload = await self._post(url, body)
        except httpx.HTTPError as e:
            raise ChainAPIError(f"Request to {url} failed: {e!r}") from e

        # Error envelopes usually carry "data": null, so check the code first.
        if isinstance(payload, dict) and payload.get("code", 0) != 0:
            raise ChainAPIError(
                f"API returned code {payload.get('code')}: {payload.get('message', '')}"
            )

        try:
            return response_model.model_validate(payload)
        except ValidationError as e:
            raise ChainAPIError(f"Failed to decode response from {url}: {e}") from e

    async def request_transfers(
        self, context: Context, row: int, page: int
    ) -> TransfersResponse:
        """
        Fetch one page of transfers for an account.

        Args:
            context: Account to query
            row: Number of entries per page
            page: 1-based page number
        """
        body = {"address": context.stash, "row": row, "page": page - 1}
        return await self._request(context, self.TRANSFERS_PATH, body, TransfersResponse)

    async def request_rewards_slashes(
        self, context: Context, row: int, page: int
    ) -> RewardsSlashesResponse:
        """Fetch one page of staking rewards and slashes for an account."""
        body = {"address": context.stash, "row": row, "page": page - 1}
        return await self._request(
            context, self.REWARD_SLASH_PATH, body, RewardsSlashesResponse
        )

    async def request_nominations(self, context: Context) -> NominationsResponse:
        """Fetch the validators an account currently nominates (not paginated)."""
        body = {"address": context.stash}
        return await self._request(
            context, self.NOMINATIONS_PATH, body, NominationsResponse
        )
