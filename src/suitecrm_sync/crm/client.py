"""Async client for the SuiteCRM REST API v8.

Provides SuiteCRMClient: OAuth2 password-grant authentication with a
cached bearer token, module and field metadata discovery, and record
creation. Every CRM-calling method goes through ensure_authenticated()
first, which is idempotent while the token is fresh.

CRM calls are never retried here. A failure surfaces immediately as
AuthenticationError, TransportError or CrmApiError and recovery is left
to the next survey completion or an explicit reinitialize / cache
refresh.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx
import structlog

from src.suitecrm_sync.crm.schemas import (
    ConnectionStatus,
    CreateRecordResult,
    CrmFieldDefinition,
)
from src.suitecrm_sync.errors import (
    AuthenticationError,
    ConfigurationError,
    CrmApiError,
    SuiteCRMSyncError,
    TransportError,
)

logger = structlog.get_logger(__name__)

JSON_API = "application/vnd.api+json"

# Seconds before real expiry at which a cached token is treated as stale
TOKEN_REFRESH_MARGIN = 60
DEFAULT_TOKEN_LIFETIME = 3600

SYSTEM_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "deleted",
        "date_entered",
        "date_modified",
        "modified_user_id",
        "created_by",
        "assigned_user_id",
        "modified_by_name",
        "created_by_name",
        "assigned_user_name",
        "team_id",
        "team_set_id",
        "team_count",
        "team_name",
        "acl_team_set_id",
        "update_date_entered",
    }
)


class AuthState(str, Enum):
    """Authentication lifecycle of a client instance."""

    uninitialized = "uninitialized"
    ready = "ready"
    failed = "failed"


# ── Normalization Helpers ───────────────────────────────────────────────────


def is_system_field(field_name: str) -> bool:
    return field_name in SYSTEM_FIELDS


def field_label(field_def: dict[str, Any], field_name: str) -> str:
    """Human-readable label from a vname key (LBL_FIRST_NAME -> First Name)."""
    vname = field_def.get("vname")
    if vname:
        label = str(vname).replace("LBL_", "").replace("_", " ")
        return " ".join(word.capitalize() for word in label.lower().split())
    return " ".join(
        word[:1].upper() + word[1:] for word in field_name.replace("_", " ").split()
    )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def _as_length(value: Any) -> int | None:
    try:
        length = int(value)
    except (TypeError, ValueError):
        return None
    return length if length > 0 else None


def normalize_field(field_name: str, field_def: dict[str, Any], module: str) -> CrmFieldDefinition:
    """Normalize one raw metadata entry into a CrmFieldDefinition."""
    field_type = field_def.get("type") or "varchar"
    options = field_def.get("options")
    if not isinstance(options, (dict, list)):
        options = None
    return CrmFieldDefinition(
        name=field_name,
        module=module,
        type=field_type,
        db_type=field_def.get("dbType") or field_type,
        label=field_label(field_def, field_name),
        required=_as_bool(field_def.get("required", False)),
        max_length=_as_length(field_def.get("len")),
        options=options,
        default=field_def.get("default"),
        comment=field_def.get("comment") or "",
    )


def _error_detail(response: httpx.Response) -> str:
    """Extract the CRM's error message, falling back to the HTTP status."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            detail = errors[0].get("detail") or errors[0].get("title")
            if detail:
                return str(detail)
        if body.get("error_description"):
            return str(body["error_description"])
    return f"HTTP {response.status_code}"


# ── Client ──────────────────────────────────────────────────────────────────


class SuiteCRMClient:
    """OAuth2-authenticated SuiteCRM v8 client.

    Args:
        base_url: SuiteCRM root URL (trailing slash stripped).
        client_id: OAuth2 client id.
        client_secret: OAuth2 client secret (plain text).
        username: CRM admin user for the password grant.
        password: CRM admin password.
        debug_mode: Log every request and response at debug level.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
        clock: Time source for token expiry.
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        username: str,
        password: str,
        debug_mode: bool = False,
        timeout: float = TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._username = username
        self._password = password
        self._debug_mode = debug_mode
        self._timeout = timeout
        self._transport = transport
        self._clock = clock

        self._access_token: str | None = None
        self._token_expires: float = 0.0
        self.auth_state = AuthState.uninitialized
        self.failure_reason: str | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_debug_mode(self, enabled: bool) -> None:
        self._debug_mode = enabled

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client for one call."""
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    def _debug(self, event: str, **kwargs: Any) -> None:
        if self._debug_mode:
            logger.debug(event, **kwargs)

    # ── Authentication ──────────────────────────────────────────────────────

    def _token_is_fresh(self) -> bool:
        return bool(self._access_token) and self._clock() < self._token_expires - TOKEN_REFRESH_MARGIN

    def reset(self) -> None:
        """Forget the cached token and any recorded failure."""
        self._access_token = None
        self._token_expires = 0.0
        self.auth_state = AuthState.uninitialized
        self.failure_reason = None

    async def ensure_authenticated(self) -> str:
        """Make sure a fresh bearer token is cached and return it.

        Raises:
            ConfigurationError: URL or OAuth2 client credentials missing.
            AuthenticationError: The token endpoint rejected the grant.
            TransportError: The token endpoint could not be reached.
        """
        if self._token_is_fresh():
            return self._access_token  # type: ignore[return-value]

        if not self._base_url or not self._client_id or not self._client_secret:
            self.auth_state = AuthState.failed
            self.failure_reason = "SuiteCRM URL or OAuth2 client credentials are not configured"
            raise ConfigurationError(self.failure_reason)

        try:
            token = await self._request_token()
        except SuiteCRMSyncError as exc:
            self.auth_state = AuthState.failed
            self.failure_reason = exc.message
            raise

        self.auth_state = AuthState.ready
        self.failure_reason = None
        return token

    async def get_access_token(self) -> str:
        """Return the cached token or obtain a new one (alias of ensure_authenticated)."""
        return await self.ensure_authenticated()

    async def _request_token(self) -> str:
        url = f"{self._base_url}/Api/access_token"
        self._debug("suitecrm.token_requested", url=url)

        form = {
            "grant_type": "password",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "username": self._username,
            "password": self._password,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("suitecrm.token_transport_error", url=url, error=str(exc))
            raise TransportError(f"API request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        token = body.get("access_token")
        if response.status_code >= 400 or not token:
            description = body.get("error_description") or body.get("message") or "Unknown error"
            logger.warning(
                "suitecrm.authentication_failed",
                status_code=response.status_code,
                error=body.get("error"),
                description=description,
            )
            raise AuthenticationError(f"OAuth2 authentication failed: {description}")

        try:
            expires_in = int(body.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME

        self._access_token = token
        self._token_expires = self._clock() + expires_in
        self._debug("suitecrm.token_obtained", expires_in=expires_in)
        return token

    # ── Requests ────────────────────────────────────────────────────────────

    async def _api_request(
        self, method: str, endpoint: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Authenticated JSON:API request against {base}/Api{endpoint}."""
        token = await self.ensure_authenticated()
        url = f"{self._base_url}/Api{endpoint}"
        headers = {
            "Content-Type": JSON_API,
            "Accept": JSON_API,
            "Authorization": f"Bearer {token}",
        }
        self._debug("suitecrm.request", method=method, url=url, payload=payload)

        try:
            async with self._client() as client:
                response = await client.request(method, url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("suitecrm.transport_error", method=method, url=url, error=str(exc))
            raise TransportError(f"API request failed: {exc}") from exc

        self._debug(
            "suitecrm.response",
            method=method,
            url=url,
            status_code=response.status_code,
        )

        if response.status_code >= 400:
            detail = _error_detail(response)
            if response.status_code == 401:
                # Token revoked or expired server-side
                self._access_token = None
                self._token_expires = 0.0
            logger.warning(
                "suitecrm.api_error",
                method=method,
                url=url,
                status_code=response.status_code,
                detail=detail,
            )
            raise CrmApiError(detail, status_code=response.status_code)

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise CrmApiError(
                f"Invalid JSON in response ({response.status_code})",
                status_code=response.status_code,
            ) from exc
        return body if isinstance(body, dict) else {}

    async def get_available_modules(self) -> list[str]:
        """Module names the API user can access."""
        body = await self._api_request("GET", "/V8/meta/modules")
        attributes = (body.get("data") or {}).get("attributes") or {}
        if isinstance(attributes, dict):
            return list(attributes.keys())
        return [str(m) for m in attributes]

    async def get_module_fields(self, module: str) -> dict[str, CrmFieldDefinition]:
        """Field definitions of ``module`` with system fields removed."""
        self._debug("suitecrm.fields_requested", module=module)
        body = await self._api_request("GET", f"/V8/meta/fields/{module}")
        raw_fields = (body.get("data") or {}).get("attributes") or {}

        fields: dict[str, CrmFieldDefinition] = {}
        for name, definition in raw_fields.items():
            if is_system_field(name):
                continue
            fields[name] = normalize_field(name, definition if isinstance(definition, dict) else {}, module)

        self._debug("suitecrm.fields_received", module=module, field_count=len(fields))
        return fields

    async def create_record(self, module: str, attributes: dict[str, Any]) -> CreateRecordResult:
        """Create a record in ``module`` and return the CRM-assigned id."""
        payload = {"data": {"type": module, "attributes": attributes}}
        body = await self._api_request("POST", "/V8/module", payload)
        data = body.get("data") or {}
        record_id = data.get("id")
        if not record_id:
            raise CrmApiError("Response did not contain a record id")

        logger.info("suitecrm.record_created", module=module, record_id=record_id)
        return CreateRecordResult(
            success=True,
            id=str(record_id),
            type=data.get("type") or module,
            attributes=data.get("attributes") or attributes,
        )

    async def test_connection(self) -> ConnectionStatus:
        """Authenticate and list modules. Never raises."""
        try:
            await self.ensure_authenticated()
            modules = await self.get_available_modules()
        except SuiteCRMSyncError as exc:
            return ConnectionStatus(success=False, message=exc.message)
        except Exception as exc:  # unexpected failure still reported, not raised
            logger.exception("suitecrm.test_connection_failed")
            return ConnectionStatus(success=False, message=str(exc))

        return ConnectionStatus(
            success=True,
            message="Successfully connected to SuiteCRM",
            modules_count=len(modules),
            modules=modules,
        )
