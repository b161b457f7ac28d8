import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ...errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

MOCK_COUNTRIES: List[Dict[str, Any]] = [
    {
        "name": "United States",
        "capital": "Washington, D.C.",
        "currency": {"code": "USD", "name": "United States dollar", "symbol": "$"},
        "languages": ["English"],
        "flag": "https://flagcdn.com/w320/us.png",
    },
    {
        "name": "United Kingdom",
        "capital": "London",
        "currency": {"code": "GBP", "name": "British pound", "symbol": "£"},
        "languages": ["English"],
        "flag": "https://flagcdn.com/w320/gb.png",
    },
]


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        f"Country fetch attempt {retry_state.attempt_number} failed: {retry_state.outcome.exception()}"
    )


def process_country(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Reduce a restcountries v3.1 record to the fields clients use.

    Returns:
        Simplified record, or None if the record is malformed
    """
    try:
        currency = None
        currencies = raw.get("currencies") or {}
        if currencies:
            # First listed currency only
            code = next(iter(currencies))
            info = currencies[code] or {}
            currency = {"code": code, "name": info.get("name", ""), "symbol": info.get("symbol", "")}

        capital = raw.get("capital") or []
        return {
            "name": raw["name"]["common"],
            "capital": capital[0] if capital else "N/A",
            "currency": currency,
            "languages": list((raw.get("languages") or {}).values()),
            "flag": raw["flags"]["png"],
        }
    except (KeyError, TypeError, AttributeError) as e:
        logger.debug(f"Skipping malformed country record: {e}")
        return None


class CountryProvider:
    """Fetches country data from a restcountries-compatible API."""

    def __init__(
        self,
        base_url: str = "https://restcountries.com/v3.1",
        use_mock: bool = False,
        retries: int = 3,
        timeout: float = 5.0,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize country provider.

        Args:
            base_url: Upstream base URL
            use_mock: Serve MOCK_COUNTRIES without calling upstream
            retries: Attempts for the full listing
            timeout: Per-request timeout in seconds
            backoff_seconds: Linear backoff step between attempts
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.use_mock = use_mock
        self.retries = retries
        self.timeout = timeout
        self.backoff_seconds = backoff_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            transport=self.transport,
        )

    @staticmethod
    def _process_all(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [country for country in map(process_country, records) if country is not None]

    async def _fetch_all(self) -> List[Dict[str, Any]]:
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/all", params={"fields": "name,capital,currencies,languages,flags"}
            )
            response.raise_for_status()
            return self._process_all(response.json())

    async def all_countries(self) -> List[Dict[str, Any]]:
        """
        List every country.

        Transport errors, error statuses and undecodable bodies are retried
        with a linearly growing wait.

        Raises:
            UpstreamUnavailable: If every attempt failed or nothing usable came back
        """
        if self.use_mock:
            return [dict(country) for country in MOCK_COUNTRIES]

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retries),
                wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
                retry=retry_if_exception_type((httpx.HTTPError, ValueError)),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    countries = await self._fetch_all()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Country data unavailable after {self.retries} attempts: {e}")
            raise UpstreamUnavailable(
                "The external API is currently unavailable. Please try again later."
            ) from e

        if not countries:
            raise UpstreamUnavailable("No valid country data received")
        logger.info(
            f"Fetched {len(countries)} countries (attempt {attempt.retry_state.attempt_number})"
        )
        return countries

    async def search(self, name: str) -> List[Dict[str, Any]]:
        """
        Search countries by name; an upstream 404 means no matches.

        Raises:
            UpstreamUnavailable: On any other upstream failure
        """
        if self.use_mock:
            needle = name.lower()
            return [dict(c) for c in MOCK_COUNTRIES if needle in c["name"].lower()]

        url = f"{self.base_url}/name/{quote(name, safe='')}"
        try:
            async with self._client() as client:
                response = await client.get(url)
                if response.status_code == 404:
                    return []
                response.raise_for_status()
                return self._process_all(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Country search for '{name}' failed: {e}")
            raise UpstreamUnavailable(
                "The external API is currently unavailable. Please try again later."
            ) from e
