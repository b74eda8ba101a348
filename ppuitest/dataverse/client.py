"""
HTTP client for the Dataverse Web API.

Acquires OAuth2 client-credentials tokens from Microsoft Entra ID and issues
authenticated OData v4 calls, one request at a time, over an aiohttp session.
"""

import json
import time
from typing import Any, Dict, List, Optional

import aiohttp

from ..core.exceptions import ApiError, ApplicationUserError, AuthError
from ..core.logging_config import get_logger, log_dataverse_call, register_secret
from .models import AccessToken


TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
API_VERSION = "v9.2"

ODATA_HEADERS = {
    "OData-MaxVersion": "4.0",
    "OData-Version": "4.0",
    "Accept": "application/json",
    "Content-Type": "application/json; charset=utf-8",
}

OAUTH_REMEDIATION: Dict[str, List[str]] = {
    "invalid_scope": [
        "Check the Dataverse URL, e.g. https://yourorg.crm.dynamics.com",
        "The scope is built as '<Dataverse URL>/.default'; a typo in the "
        "organisation name produces invalid_scope",
    ],
    "invalid_client": [
        "Check the client id matches the app registration",
        "Check the client secret value (not the secret id) and that it has not expired",
    ],
    "invalid_request": [
        "Check the tenant id is the directory (tenant) GUID or verified domain",
        "Confirm none of the tenant id, client id or client secret inputs are empty",
    ],
    "unauthorized_client": [
        "Enable the client credentials flow for the app registration",
    ],
}

GENERIC_AUTH_REMEDIATION = [
    "Check the tenant id, client id and client secret inputs",
    "Check the Dataverse URL points at an existing environment",
]


def normalize_resource_url(url: str) -> str:
    """Force an https:// scheme and strip trailing slashes."""
    url = url.strip()
    lowered = url.lower()
    if lowered.startswith("http://"):
        url = "https://" + url[len("http://"):]
    elif not lowered.startswith("https://"):
        url = "https://" + url
    return url.rstrip("/")


def _parse_json(text: str) -> Any:
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def _dataverse_message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message")
    return None


async def get_access_token(
    session: aiohttp.ClientSession,
    tenant_id: str,
    client_id: str,
    client_secret: str,
    resource_url: str,
) -> AccessToken:
    """
    Acquire a token with the OAuth2 client-credentials grant.

    Args:
        session: HTTP session
        tenant_id: Entra tenant id
        client_id: App registration client id
        client_secret: App registration secret
        resource_url: Dataverse environment URL

    Returns:
        Access token for the environment

    Raises:
        AuthError: If an input is empty or the token endpoint rejects the request
    """
    logger = get_logger(__name__)

    missing = [
        name
        for name, value in (
            ("tenant id", tenant_id),
            ("client id", client_id),
            ("client secret", client_secret),
            ("resource URL", resource_url),
        )
        if not value
    ]
    if missing:
        raise AuthError(
            f"Cannot request an access token, missing: {', '.join(missing)}",
            remediation=GENERIC_AUTH_REMEDIATION,
        )

    register_secret(client_secret)
    resource = normalize_resource_url(resource_url)
    token_url = TOKEN_URL.format(tenant=tenant_id)
    form = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": f"{resource}/.default",
    }

    logger.info(
        "Requesting access token",
        extra={"metadata": {"tenant_id": tenant_id, "scope": form["scope"]}},
    )

    start_time = time.time()
    async with session.request("POST", token_url, data=form) as response:
        status = response.status
        text = await response.text()
    duration = time.time() - start_time

    payload = _parse_json(text)

    if not 200 <= status < 300:
        oauth_error = payload.get("error") if isinstance(payload, dict) else None
        message = f"Token request failed with HTTP {status}"
        if oauth_error:
            message += f" ({oauth_error})"
        raise AuthError(
            message,
            status_code=status,
            oauth_error=oauth_error,
            token_url=token_url,
            remediation=OAUTH_REMEDIATION.get(oauth_error, GENERIC_AUTH_REMEDIATION),
        )

    value = payload.get("access_token") if isinstance(payload, dict) else None
    if not value:
        raise AuthError(
            "Token endpoint response did not contain an access_token",
            status_code=status,
            token_url=token_url,
            remediation=GENERIC_AUTH_REMEDIATION,
        )

    register_secret(value)
    logger.info(
        f"Access token acquired in {duration:.2f}s",
        extra={"metadata": {"expires_in": payload.get("expires_in")}},
    )
    return AccessToken(value=value, expires_in=int(payload.get("expires_in", 3600)))


class DataverseClient:
    """
    Authenticated Dataverse Web API client.

    Every call is a single blocking request from the caller's point of view;
    no batching or retries happen at this layer.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        resource_url: str,
        token: AccessToken,
        api_version: str = API_VERSION,
    ):
        self.session = session
        self.resource_url = normalize_resource_url(resource_url)
        self.token = token
        self.api_version = api_version
        self.logger = get_logger(__name__)

    @property
    def api_root(self) -> str:
        return f"{self.resource_url}/api/data/{self.api_version}/"

    def entity_url(self, path: str) -> str:
        """Absolute URL for an entity, used in @odata.id references."""
        return self.api_root + path.lstrip("/")

    async def call(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Issue one authenticated Web API call.

        Args:
            method: HTTP method
            path: Path relative to the Web API root
            body: Optional JSON body
            headers: Extra request headers
            params: Query options, URL-encoded by the session

        Returns:
            Parsed JSON response, or an empty dict for 204 responses

        Raises:
            ApplicationUserError: On 401
            ApiError: On any other non-2xx response
        """
        url = self.entity_url(path)
        request_headers = dict(ODATA_HEADERS)
        request_headers["Authorization"] = self.token.authorization_header
        if headers:
            request_headers.update(headers)

        kwargs: Dict[str, Any] = {"headers": request_headers}
        if body is not None:
            kwargs["json"] = body
        if params:
            kwargs["params"] = params

        start_time = time.time()
        async with self.session.request(method, url, **kwargs) as response:
            status = response.status
            text = await response.text()
        log_dataverse_call(self.logger, method, path, status, time.time() - start_time)

        payload = _parse_json(text)

        if status == 401:
            raise ApplicationUserError(
                f"{method} {path} was rejected with 401 Unauthorized",
                body=text,
                method=method,
                url=url,
            )

        if not 200 <= status < 300:
            detail = _dataverse_message(payload)
            message = f"{method} {path} failed with HTTP {status}"
            if detail:
                message += f": {detail}"
            raise ApiError(
                message,
                status_code=status,
                body=text,
                method=method,
                url=url,
            )

        return payload if isinstance(payload, dict) else {"value": payload}
