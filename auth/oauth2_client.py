from __future__ import annotations

import base64
import hashlib
import json
import logging
import secrets
import time
import urllib.parse
from dataclasses import dataclass

import httpx

from auth.errors import NetworkError, ProviderAuthError
from auth.providers import OAuthProvider

LOGGER = logging.getLogger("crmproxy.oauth")


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    expires_at: float | None
    instance_url: str | None = None
    scope: str = ""

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token") or None
        expires_in = payload.get("expires_in")
        instance_url = payload.get("instance_url") or None
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise ProviderAuthError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ProviderAuthError("Token response refresh_token must be a string.")
        if isinstance(expires_in, str) and expires_in.isdigit():
            expires_in = int(expires_in)
        if expires_in is not None and not isinstance(expires_in, int):
            raise ProviderAuthError("Token response expires_in must be an integer.")
        if not isinstance(scope, str):
            scope = ""

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            expires_at=time.time() + expires_in if expires_in is not None else None,
            instance_url=instance_url,
            scope=scope,
        )


def generate_state() -> str:
    return secrets.token_hex(32)


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(32)


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def build_authorization_url(
    provider: OAuthProvider,
    state: str,
    code_challenge: str | None = None,
) -> str:
    query = {
        "response_type": "code",
        "client_id": provider.client_id,
        "redirect_uri": provider.redirect_uri,
        "scope": " ".join(provider.scopes),
        "state": state,
    }
    if code_challenge:
        query["code_challenge"] = code_challenge
        query["code_challenge_method"] = "S256"
    return f"{provider.authorize_url}?{urllib.parse.urlencode(query)}"


def _error_from_token_response(response: httpx.Response) -> ProviderAuthError:
    try:
        body = response.json()
    except json.JSONDecodeError:
        body = None

    if isinstance(body, dict):
        error = body.get("error") or body.get("status")
        description = body.get("error_description") or body.get("message")
        if description:
            return ProviderAuthError(
                str(description),
                error=str(error) if error else None,
                http_status=response.status_code,
                details=body,
            )
        if error:
            return ProviderAuthError(
                str(error),
                error=str(error),
                http_status=response.status_code,
                details=body,
            )

    text = response.text
    if len(text) > 1000:
        text = text[:1000] + "...<truncated>"
    LOGGER.warning("Token endpoint error body: %s", text)
    return ProviderAuthError(
        f"Token request failed with status {response.status_code}",
        http_status=response.status_code,
        details=text,
    )


async def _token_request(
    token_url: str,
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(token_url, data=payload)
    except httpx.HTTPError as error:
        raise NetworkError(
            f"Could not reach token endpoint {token_url}: {error}. "
            "Check your network connectivity and the configured instance URL."
        ) from error
    finally:
        if own_client:
            await http_client.aclose()

    LOGGER.info(
        "Token endpoint %s grant_type=%s -> %s",
        token_url,
        payload.get("grant_type"),
        response.status_code,
    )
    if not response.is_success:
        raise _error_from_token_response(response)

    try:
        body = response.json()
    except json.JSONDecodeError as error:
        raise ProviderAuthError(
            "Token endpoint returned a non-JSON body.",
            http_status=response.status_code,
            details=response.text[:1000],
        ) from error
    if not isinstance(body, dict):
        raise ProviderAuthError("Token endpoint returned an unexpected payload.")
    return TokenResponse.from_payload(body)


async def exchange_code(
    token_url: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    payload = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": redirect_uri,
        "code": code,
    }
    if code_verifier:
        payload["code_verifier"] = code_verifier
    return await _token_request(token_url, payload, client=client)


async def refresh_token(
    token_url: str,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        token_url,
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        },
        client=client,
    )


async def password_grant(
    token_url: str,
    client_id: str,
    client_secret: str,
    username: str,
    password: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    """Legacy resource-owner password grant.

    Salesforce expects the user's security token appended to ``password``.
    """
    return await _token_request(
        token_url,
        {
            "grant_type": "password",
            "client_id": client_id,
            "client_secret": client_secret,
            "username": username,
            "password": password,
        },
        client=client,
    )
