from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

import httpx

from auth.errors import NetworkError, NotAuthenticatedError, ProviderApiError
from auth.oauth_server import OAuthFlow
from auth.urls import join_url

from .constants import LOGGER

MAX_AUTH_RETRIES = 1

STATUS_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    415: "UNSUPPORTED_MEDIA_TYPE",
    429: "RATE_LIMITED",
}


@dataclass
class Ok:
    status_code: int
    data: Any


@dataclass
class ProviderError:
    status_code: int
    code: str
    message: str
    details: Any = None


ProviderResult = Union[Ok, ProviderError]


def parse_body(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}


def _provider_error_fields(data: Any) -> tuple[str | None, str | None]:
    # Salesforce answers with a list of {"message", "errorCode"}; HubSpot with one object.
    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]
    if not isinstance(data, dict):
        return None, None

    message = data.get("message") or data.get("error_description")
    provider_code = data.get("errorCode") or data.get("category") or data.get("error")
    return (
        message if isinstance(message, str) else None,
        provider_code if isinstance(provider_code, str) else None,
    )


def decode_response(response: httpx.Response) -> ProviderResult:
    data = parse_body(response.text)
    if response.is_success:
        return Ok(status_code=response.status_code, data=data)

    message, provider_code = _provider_error_fields(data)
    if not message:
        message = f"HTTP {response.status_code} {response.reason_phrase}".strip()

    details: dict[str, Any] = {"status": response.status_code}
    if provider_code:
        details["providerCode"] = provider_code
    details["body"] = data

    return ProviderError(
        status_code=response.status_code,
        code=STATUS_ERROR_CODES.get(response.status_code, "PROVIDER_ERROR"),
        message=message,
        details=details,
    )


def error_status_for(provider_status: int) -> int:
    if 400 <= provider_status < 500:
        return provider_status
    return 500


class ProviderApiClient:
    """Bearer-authenticated calls against a provider REST API.

    A 401 answer triggers one token refresh and one re-issue of the request;
    every other failure is raised as is.
    """

    def __init__(
        self,
        flow: OAuthFlow,
        *,
        http_client: httpx.AsyncClient,
        max_auth_retries: int = MAX_AUTH_RETRIES,
    ) -> None:
        self.flow = flow
        self._http_client = http_client
        self._max_auth_retries = max(0, max_auth_retries)

    @property
    def provider_name(self) -> str:
        return self.flow.provider.name

    async def request(
        self,
        session_id: str | None,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Ok:
        record = await self.flow.token_store.get(session_id) if session_id else None
        if record is None or not record.access_token:
            raise NotAuthenticatedError(f"Not authenticated with {self.provider_name}")

        attempt = 0
        while True:
            base_url = record.instance_url or self.flow.provider.api_base_url
            if not base_url:
                raise NotAuthenticatedError(
                    f"No {self.provider_name} instance URL known for this session"
                )

            response = await self._send(
                method,
                join_url(base_url, path),
                access_token=record.access_token,
                params=params,
                json_body=json_body,
                headers=headers,
            )
            result = decode_response(response)
            if isinstance(result, Ok):
                return result

            if result.status_code == 401 and attempt < self._max_auth_retries:
                attempt += 1
                LOGGER.info(
                    "%s returned 401 for %s %s; refreshing access token",
                    self.provider_name,
                    method,
                    path,
                )
                record = await self.flow.refresh(session_id)
                continue

            raise ProviderApiError(
                result.message,
                code=result.code,
                status_code=error_status_for(result.status_code),
                details=result.details,
            )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        access_token: str,
        params: dict[str, Any] | None,
        json_body: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        request_headers = {"Accept": "application/json", **(headers or {})}
        request_headers["Authorization"] = f"Bearer {access_token}"
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=request_headers,
            )
        except httpx.HTTPError as error:
            raise NetworkError(
                f"Request to {self.provider_name} failed: {error}. Check your network connectivity."
            ) from error


async def log_request(request: httpx.Request) -> None:
    LOGGER.info("Provider request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.info(
        "Provider response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        LOGGER.warning("Provider error body: %s", text)


def build_http_client(
    *,
    timeout: float = 30.0,
    debug_enabled: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    event_hooks: dict[str, list] = {"request": [], "response": []}
    if debug_enabled:
        event_hooks["request"].append(log_request)
        event_hooks["response"].append(log_response)
    return httpx.AsyncClient(timeout=timeout, transport=transport, event_hooks=event_hooks)


def setup_http_logging(debug_enabled: bool) -> None:
    # httpx logs every request at INFO, duplicating the hooks above.
    logging.getLogger("httpx").setLevel(logging.WARNING if debug_enabled else logging.ERROR)
