"""HTTP client for the Frontegg vendor API."""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from entitlement_bridge.common.config import BridgeSettings
from entitlement_bridge.common.exceptions import AuthFailureError, UpstreamApiError
from entitlement_bridge.provisioning.schemas import (
    Entitlement,
    IdentityAccount,
    IdentityUser,
    UserLookup,
)

logger = logging.getLogger(__name__)

AUTH_PATH = "/auth/vendor"
USER_BY_EMAIL_PATH = "/identity/v1/users/email/{email}"
TENANTS_PATH = "/tenants/resources/tenants/v1"
USERS_PATH = "/identity/resources/users/v2"
ENTITLEMENTS_PATH = "/entitlements/resources/entitlements/v2"

_MAX_ERROR_BODY = 500


class FronteggClient:
    """Calls the Frontegg vendor endpoints used by the provisioning flow.

    Every call is bounded by ``timeout`` seconds. Nothing is retried here;
    a failed call surfaces as ``UpstreamApiError`` (or ``AuthFailureError``
    for the token exchange) and Stripe's redelivery does the retrying.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        api_key: str,
        role_ids: Optional[list[str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.api_key = api_key
        self.role_ids = list(role_ids or [])
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(
        cls,
        settings: BridgeSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "FronteggClient":
        return cls(
            base_url=settings.frontegg_base_url,
            client_id=settings.frontegg_client_id,
            api_key=settings.frontegg_api_key,
            role_ids=settings.frontegg_role_ids,
            timeout=settings.http_timeout,
            transport=transport,
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        token: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        try:
            return await self._get_http_client().request(
                method, path, headers=request_headers, **kwargs,
            )
        except httpx.TimeoutException as e:
            raise UpstreamApiError(operation, body=f"timeout: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamApiError(operation, body=str(e)) from e

    @staticmethod
    def _error(operation: str, resp: httpx.Response) -> UpstreamApiError:
        logger.error(
            "Frontegg %s failed: %s %s",
            operation,
            resp.status_code,
            resp.text[:_MAX_ERROR_BODY],
            extra={"operation": operation, "status_code": resp.status_code},
        )
        return UpstreamApiError(operation, resp.status_code, resp.text[:_MAX_ERROR_BODY])

    @staticmethod
    def _json(operation: str, resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamApiError(operation, resp.status_code, "invalid JSON response") from e
        if not isinstance(data, dict):
            raise UpstreamApiError(operation, resp.status_code, "unexpected response shape")
        return data

    # ── Operations ──

    async def get_vendor_token(self) -> str:
        """Exchange client ID + API key for a vendor bearer token."""
        try:
            resp = await self._send(
                "authenticate",
                "POST",
                AUTH_PATH,
                json={"clientId": self.client_id, "secret": self.api_key},
            )
        except UpstreamApiError as e:
            logger.error("Error getting Frontegg token: %s", e.body)
            raise AuthFailureError() from e

        if not resp.is_success:
            raise AuthFailureError() from self._error("authenticate", resp)

        try:
            token = self._json("authenticate", resp).get("token")
        except UpstreamApiError as e:
            raise AuthFailureError() from e
        if not token:
            raise AuthFailureError("Frontegg vendor response contained no token")
        return token

    async def get_user_by_email(self, email: str, token: str) -> UserLookup:
        """Look up a user; a 404 is reported as NOT_FOUND, never raised."""
        try:
            resp = await self._send(
                "get_user_by_email",
                "GET",
                USER_BY_EMAIL_PATH.format(email=quote(email, safe="")),
                token=token,
            )
        except UpstreamApiError as e:
            return UserLookup.failed(e)

        if resp.status_code == 404:
            return UserLookup.not_found()
        if not resp.is_success:
            return UserLookup.failed(self._error("get_user_by_email", resp))

        try:
            data = self._json("get_user_by_email", resp)
        except UpstreamApiError as e:
            return UserLookup.failed(e)

        tenant_id = data.get("tenantId") or next(iter(data.get("tenantIds") or []), None)
        if not data.get("id") or not tenant_id:
            return UserLookup.failed(UpstreamApiError(
                "get_user_by_email", resp.status_code, "user record missing id or tenantId",
            ))
        return UserLookup.found(IdentityUser(
            id=data["id"],
            tenant_id=tenant_id,
            email=data.get("email", email),
        ))

    async def create_account(self, tenant_id: str, name: str, token: str) -> IdentityAccount:
        """Create a tenant. A 409 means the tenant already exists and is not an error."""
        payload = {"tenantId": tenant_id, "name": name}
        logger.debug("Creating Frontegg account: %s", payload)

        resp = await self._send(
            "create_account", "POST", TENANTS_PATH, token=token, json=payload,
        )
        if resp.status_code == 409:
            logger.info("Frontegg account %s already exists", tenant_id,
                        extra={"tenant_id": tenant_id})
            return IdentityAccount(tenant_id=tenant_id, name=name, created=False)
        if not resp.is_success:
            raise self._error("create_account", resp)

        data = self._json("create_account", resp)
        return IdentityAccount(
            tenant_id=data.get("tenantId") or tenant_id,
            name=data.get("name", name),
        )

    async def create_user(
        self,
        email: str,
        name: str,
        tenant_id: str,
        token: str,
    ) -> Optional[IdentityUser]:
        """Create a user inside ``tenant_id``.

        Returns None on 409: a user with that email already exists.
        """
        payload = {
            "email": email,
            "name": name,
            "roleIds": self.role_ids,
            "provider": "local",
            "skipInviteEmail": False,
        }
        logger.debug("Creating Frontegg user in tenant %s: %s", tenant_id, payload)

        resp = await self._send(
            "create_user",
            "POST",
            USERS_PATH,
            token=token,
            headers={"frontegg-tenant-id": tenant_id},
            json=payload,
        )
        if resp.status_code == 409:
            return None
        if not resp.is_success:
            raise self._error("create_user", resp)

        data = self._json("create_user", resp)
        if not data.get("id"):
            raise UpstreamApiError("create_user", resp.status_code, "response missing user id")
        return IdentityUser(
            id=data["id"],
            tenant_id=data.get("tenantId") or tenant_id,
            email=data.get("email", email),
        )

    async def create_entitlement(
        self,
        tenant_id: str,
        user_id: str,
        feature_id: str,
        expiration_date: str,
        token: str,
    ) -> Entitlement:
        """Grant ``feature_id`` to the tenant/user until ``expiration_date`` (ISO-8601)."""
        payload = {
            "tenantId": tenant_id,
            "userId": user_id,
            "featureId": feature_id,
            "expirationDate": expiration_date,
        }
        logger.debug("Creating Frontegg entitlement: %s", payload)

        resp = await self._send(
            "create_entitlement", "POST", ENTITLEMENTS_PATH, token=token, json=payload,
        )
        if not resp.is_success:
            raise self._error("create_entitlement", resp)

        return Entitlement(
            tenant_id=tenant_id,
            user_id=user_id,
            feature_id=feature_id,
            expiration_date=expiration_date,
        )
