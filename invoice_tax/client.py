"""
HTTP client for the external tax engine.

Each call carries a bearer token from a ``token_provider``. Use
``OAuthTokenProvider`` for the engine's client-credentials flow, or pass
any callable returning a token.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Optional

import httpx
import structlog

from invoice_tax.config import TaxEngineSettings
from invoice_tax.engine_models import TaxRequest, TaxResponse
from invoice_tax.exceptions import TaxEngineError, TaxEngineNotConfiguredError

logger = structlog.get_logger(__name__)

CALCULATE_TAX_PATH = "/vertex-ws/v2/supplies"
TRANSACTIONS_PATH = "/vertex-ws/v2/transactions"
TOKEN_PATH = "/oseries-auth/oauth/token"

# Tokens are renewed this many seconds before they expire
TOKEN_EXPIRY_MARGIN = 30


class OAuthTokenProvider:
    """
    Client-credentials token source built from ``client_id`` and
    ``client_secret``. The token is cached until shortly before it expires.
    """

    def __init__(
        self,
        settings: TaxEngineSettings,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self._client = http_client
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            if not self.settings.url:
                raise TaxEngineNotConfiguredError()
            self._client = httpx.Client(
                base_url=self.settings.url.rstrip("/"),
                timeout=httpx.Timeout(
                    self.settings.read_timeout,
                    connect=self.settings.connect_timeout,
                ),
            )
        return self._client

    def __call__(self) -> str:
        if self._token is not None and self.clock() < self._expires_at:
            return self._token

        form = {
            "grant_type": "client_credentials",
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
        }
        try:
            response = self._get_client().post(
                TOKEN_PATH, data=form, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as e:
            raise TaxEngineError(f"Token request failed: {e}") from e

        if response.status_code != 200:
            raise TaxEngineError(
                f"Token request failed with HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text or None,
                context={"path": TOKEN_PATH},
            )

        payload = response.json()
        self._token = payload["access_token"]
        expires_in = payload.get("expires_in") or 0
        self._expires_at = self.clock() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        logger.info("Tax engine token acquired", expires_in=expires_in)
        return self._token

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class TaxEngineClient:
    """Synchronous client for the calculate-tax and transaction endpoints."""

    def __init__(
        self,
        settings: Optional[TaxEngineSettings] = None,
        token_provider: Optional[Callable[[], str]] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings or TaxEngineSettings()
        self.token_provider = token_provider
        self._client = http_client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            if not self.settings.url:
                logger.warning("Tax engine url is not configured")
                raise TaxEngineNotConfiguredError()
            self._client = httpx.Client(
                base_url=self.settings.url.rstrip("/"),
                timeout=httpx.Timeout(
                    self.settings.read_timeout,
                    connect=self.settings.connect_timeout,
                ),
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {self.token_provider()}"
        return headers

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = self._get_client()
        try:
            response = client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error("Tax engine unreachable", path=path, error=str(e))
            raise TaxEngineError(f"Tax engine request failed: {e}") from e

        if response.is_error:
            raise TaxEngineError(
                f"Tax engine returned HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text or None,
                context={"path": path},
            )
        return response

    def calculate_tax(self, request: TaxRequest) -> TaxResponse:
        response = self._send("POST", CALCULATE_TAX_PATH, json=request.to_dict())
        return TaxResponse.from_dict(response.json(parse_float=Decimal))

    def delete_transaction(self, document_code: str) -> None:
        self._send("DELETE", f"{TRANSACTIONS_PATH}/{document_code}")
        logger.info("Tax engine transaction deleted", document_code=document_code)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        if isinstance(self.token_provider, OAuthTokenProvider):
            self.token_provider.close()

    def __enter__(self) -> "TaxEngineClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
