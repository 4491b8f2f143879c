from __future__ import annotations

import logging
import secrets
import time

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth import oauth2_client
from auth.errors import (
    ConfigurationError,
    CsrfError,
    NetworkError,
    NoRefreshTokenError,
    ProviderAuthError,
)
from auth.models import OAuthSession, TokenRecord
from auth.providers import OAuthProvider
from auth.token_store import TokenStore
from auth.urls import append_query_params, redact

LOGGER = logging.getLogger("crmproxy.oauth")
SESSION_ID_KEY = "sid"
PROBE_TIMEOUT_SECONDS = 5.0

PASSWORD_FLOW_HINTS = {
    "invalid_client_id": [
        "Invalid Client ID (Consumer Key).",
        "Check the Consumer Key of your Connected App.",
    ],
    "invalid_client": [
        "Invalid Client Secret (Consumer Secret).",
        "Check the Consumer Secret of your Connected App.",
    ],
    "invalid_grant": [
        "Invalid credentials or configuration.",
        "1. Check username and password are correct",
        "2. Ensure the security token is appended to the password",
        "3. Reset the security token if needed",
        "4. Check the Connected App allows the Password Flow",
        "5. Verify the user has API access permissions",
        "6. Check IP restrictions in the Connected App",
    ],
    "unsupported_grant_type": [
        "Password Flow is not enabled.",
        "Enable the Password Flow in the Connected App OAuth settings.",
    ],
}
DEFAULT_PASSWORD_FLOW_HINTS = [
    "Unknown error returned by the token endpoint.",
    "Check the provider documentation for this error code.",
]


def get_session_id(request: Request, *, create: bool = False) -> str | None:
    session_id = request.session.get(SESSION_ID_KEY)
    if session_id is None and create:
        session_id = secrets.token_urlsafe(24)
        request.session[SESSION_ID_KEY] = session_id
    return session_id


def password_flow_hints(error: str | None) -> list[str]:
    return list(PASSWORD_FLOW_HINTS.get(error or "", DEFAULT_PASSWORD_FLOW_HINTS))


class OAuthFlow:
    """Authorization Code state machine for one provider.

    Pending sessions (state plus PKCE verifier) and token records are both
    keyed by the browser session id held in the signed session cookie.
    """

    def __init__(
        self,
        *,
        provider: OAuthProvider,
        token_store: TokenStore,
        http_client: httpx.AsyncClient | None = None,
        pending_session_ttl_seconds: int = 600,
        home_url: str = "/",
        exchange_code_fn=oauth2_client.exchange_code,
        refresh_token_fn=oauth2_client.refresh_token,
        password_grant_fn=oauth2_client.password_grant,
    ) -> None:
        self.provider = provider
        self.token_store = token_store
        self.pending_session_ttl_seconds = pending_session_ttl_seconds
        self.home_url = home_url

        self.pending_sessions: dict[str, OAuthSession] = {}

        self._http_client = http_client
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn
        self._password_grant_fn = password_grant_fn

    # -- state machine ---------------------------------------------------------

    def login(self, session_id: str) -> str:
        missing = self.provider.missing_settings()
        if missing:
            raise ConfigurationError(
                "OAuth configuration incomplete",
                troubleshooting=[
                    "Check your .env file contains:",
                    *(f"{key}=..." for key in missing),
                ],
            )

        self._cleanup_pending_sessions()

        state = oauth2_client.generate_state()
        code_verifier = None
        code_challenge = None
        if self.provider.use_pkce:
            code_verifier = oauth2_client.generate_code_verifier()
            code_challenge = oauth2_client.generate_code_challenge(code_verifier)

        self.pending_sessions[session_id] = OAuthSession(
            state=state,
            code_verifier=code_verifier,
            created_at=time.time(),
        )

        auth_url = oauth2_client.build_authorization_url(
            self.provider,
            state=state,
            code_challenge=code_challenge,
        )
        LOGGER.info(
            "%s authorization flow initiated client_id=%s redirect_uri=%s pkce=%s",
            self.provider.name,
            redact(self.provider.client_id),
            self.provider.redirect_uri,
            code_challenge is not None,
        )
        return auth_url

    async def callback(
        self,
        session_id: str | None,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> TokenRecord:
        self._cleanup_pending_sessions()

        # Single use: consumed before any check so a failed callback cannot be replayed.
        pending = self.pending_sessions.pop(session_id, None) if session_id else None

        if error:
            LOGGER.warning("%s authorization denied: %s", self.provider.name, error)
            raise ProviderAuthError(error, error=error)

        if pending is None or not state or not secrets.compare_digest(
            state.encode("utf-8"), pending.state.encode("utf-8")
        ):
            LOGGER.warning(
                "%s callback with invalid state parameter, possible CSRF", self.provider.name
            )
            raise CsrfError("Invalid state parameter.")

        if not code:
            raise ProviderAuthError("Missing authorization code.", error="missing_code")

        exchanged = await self._exchange_code_fn(
            token_url=self.provider.token_url,
            client_id=self.provider.client_id,
            client_secret=self.provider.client_secret,
            code=code,
            redirect_uri=self.provider.redirect_uri,
            code_verifier=pending.code_verifier,
            client=self._http_client,
        )

        record = self._record_from_token(exchanged)
        await self.token_store.set(session_id, record)
        LOGGER.info(
            "%s authentication successful instance_url=%s access_token_len=%s refresh_token=%s",
            self.provider.name,
            record.instance_url,
            len(record.access_token or ""),
            record.has_refresh_token,
        )
        return record

    async def refresh(self, session_id: str | None) -> TokenRecord:
        record = await self.token_store.get(session_id) if session_id else None
        if record is None or not record.refresh_token:
            raise NoRefreshTokenError("No refresh token available")

        LOGGER.info("%s token refresh attempt", self.provider.name)
        refreshed = await self._refresh_token_fn(
            token_url=self.provider.token_url_for(record.instance_url),
            client_id=self.provider.client_id,
            client_secret=self.provider.client_secret,
            refresh_token=record.refresh_token,
            client=self._http_client,
        )

        record.access_token = refreshed.access_token
        record.expires_at = refreshed.expires_at
        if refreshed.refresh_token:
            record.refresh_token = refreshed.refresh_token
        if refreshed.instance_url:
            record.instance_url = refreshed.instance_url
        LOGGER.info(
            "%s token refreshed rotated_refresh_token=%s",
            self.provider.name,
            bool(refreshed.refresh_token),
        )
        return record

    async def status(self, session_id: str | None) -> dict:
        record = await self.token_store.get(session_id) if session_id else None
        if record is None:
            record = TokenRecord()
        return {
            "authenticated": record.authenticated,
            "hasRefreshToken": record.has_refresh_token,
            "instanceUrl": record.instance_url,
        }

    async def logout(self, session_id: str | None) -> None:
        if not session_id:
            return
        record = await self.token_store.get(session_id)
        if record is not None:
            record.clear()
        await self.token_store.delete(session_id)
        LOGGER.info("%s logout, tokens cleared", self.provider.name)

    async def password_login(self, session_id: str, username: str, password: str) -> TokenRecord:
        missing = self.provider.missing_settings()
        if missing:
            raise ConfigurationError(
                "OAuth configuration incomplete",
                troubleshooting=["Check your .env file contains:", *(f"{key}=..." for key in missing)],
            )

        exchanged = await self._password_grant_fn(
            token_url=self.provider.token_url,
            client_id=self.provider.client_id,
            client_secret=self.provider.client_secret,
            username=username,
            password=password,
            client=self._http_client,
        )
        record = self._record_from_token(exchanged)
        await self.token_store.set(session_id, record)
        LOGGER.info(
            "%s password flow authentication successful instance_url=%s",
            self.provider.name,
            record.instance_url,
        )
        return record

    async def probe_authorization_url(self, auth_url: str) -> int | None:
        own_client = self._http_client is None
        http_client = self._http_client or httpx.AsyncClient()
        try:
            response = await http_client.head(auth_url, timeout=PROBE_TIMEOUT_SECONDS)
        except httpx.HTTPError as error:
            LOGGER.warning(
                "Unable to test %s authorization URL accessibility: %s", self.provider.name, error
            )
            return None
        finally:
            if own_client:
                await http_client.aclose()

        if response.status_code == 400:
            LOGGER.error(
                "%s authorization URL returned 400; the app is not configured "
                "for the Authorization Code flow",
                self.provider.name,
            )
        elif response.status_code not in (200, 302):
            LOGGER.warning(
                "%s authorization URL probe returned unexpected status %s",
                self.provider.name,
                response.status_code,
            )
        return response.status_code

    # -- routes ----------------------------------------------------------------

    @property
    def prefix(self) -> str:
        return f"/api/{self.provider.key}/auth"

    def routes(self) -> list[Route]:
        routes = [
            Route(f"{self.prefix}/login", self._handle_login, methods=["GET"]),
            Route(f"{self.prefix}/callback", self._handle_callback, methods=["GET"]),
            Route(f"{self.prefix}/refresh", self._handle_refresh, methods=["POST"]),
            Route(f"{self.prefix}/status", self._handle_status, methods=["GET"]),
            Route(f"{self.prefix}/logout", self._handle_logout, methods=["POST"]),
        ]
        if self.provider.supports_password_grant:
            routes.append(
                Route(f"{self.prefix}/password", self._handle_password, methods=["POST"])
            )
        return routes

    # -- handlers --------------------------------------------------------------

    async def _handle_login(self, request: Request) -> Response:
        session_id = get_session_id(request, create=True)
        try:
            auth_url = self.login(session_id)
        except ConfigurationError as error:
            LOGGER.error("%s: %s", self.provider.name, error.message)
            return JSONResponse(
                {
                    "success": False,
                    "error": error.message,
                    "troubleshooting": error.troubleshooting,
                },
                status_code=500,
            )

        if self.provider.probe_authorize_url:
            probe_status = await self.probe_authorization_url(auth_url)
            if probe_status == 400:
                return JSONResponse(
                    self._misconfigured_app_payload(auth_url, probe_status),
                    status_code=400,
                )

        return JSONResponse(
            {
                "success": True,
                "authUrl": auth_url,
                "message": "Redirect user to this URL for authentication",
            }
        )

    async def _handle_callback(self, request: Request) -> Response:
        session_id = get_session_id(request)
        try:
            await self.callback(
                session_id,
                code=request.query_params.get("code"),
                state=request.query_params.get("state"),
                error=request.query_params.get("error"),
            )
        except CsrfError:
            return self._redirect_home({"error": "invalid_state"})
        except ProviderAuthError as error:
            LOGGER.warning("%s token exchange failed: %s", self.provider.name, error.message)
            # Only provider-reported errors reach the redirect URL.
            message = error.message if error.error else "Token exchange failed"
            return self._redirect_home({"error": message})
        except NetworkError as error:
            LOGGER.error("%s callback network failure: %s", self.provider.name, error.message)
            return self._redirect_home({"error": "Authentication failed"})
        except Exception:
            LOGGER.exception("%s callback error", self.provider.name)
            return self._redirect_home({"error": "Authentication failed"})

        return self._redirect_home({"auth": "success"})

    async def _handle_refresh(self, request: Request) -> Response:
        session_id = get_session_id(request)
        try:
            await self.refresh(session_id)
        except NoRefreshTokenError as error:
            return JSONResponse(error.to_payload(), status_code=error.status_code)
        except ProviderAuthError as error:
            LOGGER.warning("%s token refresh failed: %s", self.provider.name, error.message)
            return JSONResponse(
                {"success": False, "error": error.message or "Token refresh failed"},
                status_code=400,
            )
        except NetworkError as error:
            return JSONResponse(error.to_payload(), status_code=error.status_code)

        return JSONResponse({"success": True, "message": "Token refreshed successfully"})

    async def _handle_status(self, request: Request) -> Response:
        return JSONResponse(await self.status(get_session_id(request)))

    async def _handle_logout(self, request: Request) -> Response:
        await self.logout(get_session_id(request))
        return JSONResponse({"success": True, "message": "Logged out successfully"})

    async def _handle_password(self, request: Request) -> Response:
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse(
                {"success": False, "error": "Invalid JSON body.", "code": "invalid_request"},
                status_code=400,
            )

        username = payload.get("username") if isinstance(payload, dict) else None
        password = payload.get("password") if isinstance(payload, dict) else None
        if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
            return JSONResponse(
                {
                    "success": False,
                    "error": "username and password are required.",
                    "code": "invalid_request",
                },
                status_code=400,
            )

        session_id = get_session_id(request, create=True)
        try:
            record = await self.password_login(session_id, username, password)
        except ConfigurationError as error:
            return JSONResponse(
                {
                    "success": False,
                    "error": error.message,
                    "troubleshooting": error.troubleshooting,
                },
                status_code=500,
            )
        except ProviderAuthError as error:
            return JSONResponse(
                {
                    "success": False,
                    "error": error.message,
                    "code": error.code,
                    "troubleshooting": password_flow_hints(error.error),
                },
                status_code=400,
            )
        except NetworkError as error:
            return JSONResponse(error.to_payload(), status_code=error.status_code)

        return JSONResponse(
            {
                "success": True,
                "message": "Authenticated with the password flow",
                "instanceUrl": record.instance_url,
            }
        )

    # -- helpers ---------------------------------------------------------------

    def _record_from_token(self, token: oauth2_client.TokenResponse) -> TokenRecord:
        return TokenRecord(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            instance_url=token.instance_url or self.provider.api_base_url,
            expires_at=token.expires_at,
        )

    def _misconfigured_app_payload(self, auth_url: str, probe_status: int) -> dict:
        client_id = redact(self.provider.client_id)
        return {
            "success": False,
            "error": "Connected App not configured for OAuth Authorization Code flow",
            "troubleshooting": [
                "Your Connected App needs configuration:",
                "1. Go to Salesforce Setup -> App Manager",
                f"2. Find Connected App: {client_id}",
                '3. Click "View" then "Edit"',
                "4. In OAuth Settings, enable Web Server Flow and Refresh Token Flow",
                f"5. Verify Callback URL: {self.provider.redirect_uri}",
                f"6. Selected OAuth Scopes: {', '.join(self.provider.scopes)}",
                "7. Save and wait 2-10 minutes for changes to take effect",
            ],
            "authUrl": auth_url,
            "debug": {
                "status": probe_status,
                "clientId": client_id,
                "callbackUrl": self.provider.redirect_uri,
            },
        }

    def _redirect_home(self, params: dict[str, str]) -> Response:
        return RedirectResponse(url=append_query_params(self.home_url, params), status_code=302)

    def _cleanup_pending_sessions(self) -> None:
        cutoff = time.time() - self.pending_session_ttl_seconds
        expired = [
            session_id
            for session_id, pending in self.pending_sessions.items()
            if pending.created_at < cutoff
        ]
        for session_id in expired:
            del self.pending_sessions[session_id]
