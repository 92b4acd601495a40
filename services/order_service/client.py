"""
Authenticated client for the gift card partner API.

The partner issues a bearer token from client credentials. The token is
kept in the partner_tokens table so every worker shares it; a 401 triggers
one re-login and one replay of the request.
"""
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import (
    PARTNER_BASE_URL,
    PARTNER_CLIENT_ID,
    PARTNER_CLIENT_SECRET,
    PARTNER_TIMEOUT_SECONDS,
)
from shared.errors import FulfillmentError
from .repository import TokenRepository
from .schemas import OrderRequest, OrderResponse

log = structlog.get_logger(__name__)

API_PREFIX = "/v1/partners"


class PartnerAPIError(FulfillmentError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PartnerClient:
    def __init__(
        self,
        base_url: str = PARTNER_BASE_URL,
        client_id: str = PARTNER_CLIENT_ID,
        client_secret: str = PARTNER_CLIENT_SECRET,
        timeout: float = PARTNER_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- Authentication ---

    async def login(self) -> str:
        if not self.client_id or not self.client_secret:
            raise PartnerAPIError("Partner credentials are not configured")
        try:
            resp = await self._get_client().post(
                f"{self.base_url}{API_PREFIX}/auth/login",
                json={"clientId": self.client_id, "clientSecret": self.client_secret},
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            log.error("partner_login_rejected", http_status=exc.response.status_code)
            raise PartnerAPIError("Partner login rejected", exc.response.status_code) from exc
        except (httpx.HTTPError, ValueError) as exc:
            log.error("partner_login_failed", error=str(exc))
            raise PartnerAPIError(f"Partner login failed: {exc}") from exc

        token = (body.get("accessToken") or body.get("token")) if isinstance(body, dict) else None
        if not token:
            log.warning("partner_login_without_token")
            raise PartnerAPIError("Partner login returned no token")
        return token

    async def refresh_token(self, db: AsyncSession) -> str:
        token = await self.login()
        await TokenRepository.save_or_update(db, token)
        log.info("partner_token_refreshed")
        return token

    async def _token(self, db: AsyncSession) -> str:
        token = await TokenRepository.get_token(db)
        return token or await self.refresh_token(db)

    # --- Requests ---

    async def _request(self, db: AsyncSession, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = f"{self.base_url}{API_PREFIX}{path}"

        async def send(token: str) -> httpx.Response:
            try:
                return await self._get_client().request(
                    method, url, json=json, headers={"Authorization": f"Bearer {token}"}
                )
            except httpx.HTTPError as exc:
                log.error("partner_unreachable", path=path, error=str(exc))
                raise PartnerAPIError(f"Partner API unreachable: {exc}") from exc

        resp = await send(await self._token(db))
        if resp.status_code == 401:
            log.info("partner_token_expired", path=path)
            resp = await send(await self.refresh_token(db))
        return resp

    @staticmethod
    def _parse_order(resp: httpx.Response) -> OrderResponse:
        try:
            return OrderResponse.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as exc:
            raise PartnerAPIError("Partner API returned a malformed order", resp.status_code) from exc

    async def create_order(self, db: AsyncSession, request: OrderRequest) -> OrderResponse:
        payload = request.model_dump(by_alias=True, mode="json")
        resp = await self._request(db, "POST", "/orders", json=payload)

        if resp.status_code == 409:
            # Same referenceId already placed: read the existing order back
            log.info("partner_order_duplicate", reference_id=request.reference_id)
            return await self.get_order_by_reference(db, request.reference_id)

        if resp.status_code >= 400:
            detail = resp.text[:500]
            log.error("partner_order_rejected", reference_id=request.reference_id, http_status=resp.status_code, detail=detail)
            raise PartnerAPIError(f"Partner order rejected with HTTP {resp.status_code}", resp.status_code)

        return self._parse_order(resp)

    async def get_order_by_reference(self, db: AsyncSession, reference_id: str) -> OrderResponse:
        resp = await self._request(db, "GET", f"/orders/by-reference/{reference_id}")
        if resp.status_code >= 400:
            raise PartnerAPIError(f"Partner order lookup failed with HTTP {resp.status_code}", resp.status_code)
        return self._parse_order(resp)
