"""
Omie API extractor with pagination, failure classification and transport retries.

The Omie API is JSON-RPC over HTTP POST: every request names a ``call`` and
carries the app credentials plus a single ``param`` object with the paging
fields. Endpoints disagree on field names, so each one is described by an
OmieEndpoint.

Retry ownership:
- OMIE_MAX_RETRIES governs transport-level retries of a single page request,
  applied here through a RetryExecutor
- The ETL engine never retries page fetches a second time; its own retry
  budget (ETL_RETRY_ATTEMPTS) is spent on item loads
"""

import httpx
from dataclasses import dataclass
from typing import Any, Dict, Optional
from ingestion.base import DataSource, Page
from ingestion.retry import RetryExecutor, RetryPolicy
from core.config import settings
from core.exceptions import APIExtractionError, ErrorKind
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OmieEndpoint:
    """Request/response field names of one Omie listing call"""
    path: str
    call: str
    records_key: str
    page_param: str
    page_size_param: str
    total_pages_key: str


ENDPOINTS: Dict[str, OmieEndpoint] = {
    "movimentos_financeiros": OmieEndpoint(
        path="financas/mf/",
        call="ListarMovimentos",
        records_key="movimentos",
        page_param="nPagina",
        page_size_param="nRegPorPagina",
        total_pages_key="nTotPaginas",
    ),
    "categorias": OmieEndpoint(
        path="geral/categorias/",
        call="ListarCategorias",
        records_key="categoria_cadastro",
        page_param="pagina",
        page_size_param="registros_por_pagina",
        total_pages_key="total_de_paginas",
    ),
}


class OmieAPIExtractor(DataSource):
    """
    Extract paginated records from the Omie API.

    Failure classification (ErrorKind on the raised APIExtractionError):
    - TRANSIENT: timeouts, network errors, HTTP 429 and 5xx
    - PERMANENT: other 4xx (auth, validation), XML or non-JSON bodies

    Attributes:
        entity: Key into ENDPOINTS
        records_per_page: Page size requested from the API
        retry_policy: Transport-level retry policy for one page request
    """

    def __init__(
        self,
        entity: str = settings.OMIE_ENTITY,
        base_url: str = settings.OMIE_BASE_URL,
        app_key: Optional[str] = None,
        app_secret: Optional[str] = None,
        records_per_page: int = settings.OMIE_RECORDS_PER_PAGE,
        timeout: float = settings.OMIE_TIMEOUT_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        if entity not in ENDPOINTS:
            raise ValueError(f"Unknown Omie entity: {entity}")

        super().__init__(source_name=entity)
        self.entity = entity
        self.endpoint = ENDPOINTS[entity]
        self.base_url = base_url.rstrip("/")
        self.app_key = app_key or settings.OMIE_APP_KEY
        self.app_secret = app_secret or settings.OMIE_APP_SECRET
        self.records_per_page = records_per_page
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.OMIE_MAX_RETRIES,
            initial_delay=settings.RETRY_DELAY_MS / 1000,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )
        self._retry = RetryExecutor(self.retry_policy)
        self._client = client
        self._owns_client = client is None

        logger.info(
            f"OmieAPIExtractor ready for {entity} - credentials "
            f"{'[CONFIGURED]' if self.app_key and self.app_secret else '[MISSING]'}"
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.endpoint.path}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _build_body(self, page: int) -> Dict[str, Any]:
        return {
            "call": self.endpoint.call,
            "app_key": self.app_key,
            "app_secret": self.app_secret,
            "param": [{
                self.endpoint.page_param: page,
                self.endpoint.page_size_param: self.records_per_page,
            }],
        }

    async def fetch_page(self, cursor: Any) -> Page:
        """
        Fetch one page, retrying transient transport failures.

        Args:
            cursor: 1-based page number

        Returns:
            Page whose next_cursor is None once the last page is reached

        Raises:
            APIExtractionError: Permanent API failure
            RetryExhaustedError: Transient failures outlasted OMIE_MAX_RETRIES
        """
        page_number = int(cursor)
        data = await self._retry.execute(
            lambda: self._request_page(page_number),
            description=f"Omie {self.endpoint.call} page {page_number}"
        )

        records = data.get(self.endpoint.records_key) or []
        if not isinstance(records, list):
            raise APIExtractionError(
                f"'{self.endpoint.records_key}' is not a list",
                context={"api_url": self.url, "page": page_number},
                kind=ErrorKind.PERMANENT
            )

        total_pages = self._parse_int(data.get(self.endpoint.total_pages_key))
        has_next = bool(records) and total_pages is not None and page_number < total_pages

        logger.debug(f"Fetched {len(records)} records from page {page_number}/{total_pages}")
        return Page(items=records, next_cursor=page_number + 1 if has_next else None)

    async def _request_page(self, page_number: int) -> Dict[str, Any]:
        client = self._get_client()
        context = {"api_url": self.url, "source_name": self.source_name, "page": page_number}

        try:
            response = await client.post(self.url, json=self._build_body(page_number), timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise APIExtractionError(
                "Request timeout",
                context={**context, "timeout": self.timeout},
                original_exception=e,
                kind=ErrorKind.TRANSIENT
            )
        except httpx.TransportError as e:
            raise APIExtractionError(
                "Network error",
                context=context,
                original_exception=e,
                kind=ErrorKind.TRANSIENT
            )

        body = response.text
        context = {**context, "status_code": response.status_code}

        if response.status_code == 429 or response.status_code >= 500:
            raise APIExtractionError(
                f"Omie API returned {response.status_code}",
                context={**context, "response_body": body[:500]},
                kind=ErrorKind.TRANSIENT
            )

        if body.lstrip().startswith("<?xml"):
            # Omie answers bad credentials with an XML fault instead of JSON
            raise APIExtractionError(
                "Omie API returned XML instead of JSON, check the app credentials",
                context={**context, "response_body": body[:500]},
                kind=ErrorKind.PERMANENT
            )

        if response.status_code >= 400:
            raise APIExtractionError(
                f"Omie API rejected the request with {response.status_code}",
                context={**context, "response_body": body[:500]},
                kind=ErrorKind.PERMANENT
            )

        try:
            data = response.json()
        except ValueError as e:
            raise APIExtractionError(
                "Failed to parse JSON response",
                context={**context, "response_body": body[:500]},
                original_exception=e,
                kind=ErrorKind.PERMANENT
            )

        if not isinstance(data, dict):
            raise APIExtractionError(
                "Unexpected response shape",
                context={**context, "response_type": type(data).__name__},
                kind=ErrorKind.PERMANENT
            )

        return data

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _parse_int(value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
