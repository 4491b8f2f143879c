from __future__ import annotations

import contextlib

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.oauth_server import OAuthFlow
from auth.token_store import MemoryTokenStore
from crmproxy.constants import APP_VERSION, LOGGER, SESSION_MAX_AGE_SECONDS
from crmproxy.crud import HubSpotRoutes, SalesforceRoutes
from crmproxy.env import (
    Settings,
    load_env,
    load_settings,
    log_provider_configuration,
    setup_logging,
)
from crmproxy.http import ProviderApiClient, build_http_client, setup_http_logging


async def index_route(request: Request) -> Response:
    return JSONResponse(
        {
            "service": "crm-oauth-proxy",
            "auth": request.query_params.get("auth"),
            "error": request.query_params.get("error"),
        }
    )


async def health_route(request: Request) -> Response:
    del request
    return JSONResponse({"status": "ok", "version": APP_VERSION})


def build_middleware(settings: Settings) -> list[Middleware]:
    cors_origins = sorted(settings.cors_origins) or ["*"]
    return [
        Middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
            allow_credentials=cors_origins != ["*"],
        ),
        Middleware(
            SessionMiddleware,
            secret_key=settings.session_secret,
            session_cookie="crmproxy_session",
            max_age=SESSION_MAX_AGE_SECONDS,
            same_site="lax",
            https_only=settings.production,
        ),
    ]


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Starlette:
    if settings is None:
        load_env()
        settings = load_settings()
    debug_enabled = setup_logging()
    setup_http_logging(debug_enabled)

    http_client = build_http_client(
        timeout=settings.http_timeout,
        debug_enabled=debug_enabled,
        transport=transport,
    )

    salesforce_flow = OAuthFlow(
        provider=settings.salesforce,
        token_store=MemoryTokenStore(ttl_seconds=SESSION_MAX_AGE_SECONDS),
        http_client=http_client,
    )
    hubspot_flow = OAuthFlow(
        provider=settings.hubspot,
        token_store=MemoryTokenStore(ttl_seconds=SESSION_MAX_AGE_SECONDS),
        http_client=http_client,
    )
    salesforce_routes = SalesforceRoutes(
        ProviderApiClient(salesforce_flow, http_client=http_client),
        api_version=settings.salesforce_api_version,
    )
    hubspot_routes = HubSpotRoutes(ProviderApiClient(hubspot_flow, http_client=http_client))

    for flow in (salesforce_flow, hubspot_flow):
        log_provider_configuration(flow.provider)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        try:
            yield
        finally:
            await http_client.aclose()

    routes = [
        Route("/", index_route, methods=["GET"]),
        Route("/oauth", index_route, methods=["GET"]),
        Route("/health", health_route, methods=["GET"]),
        *salesforce_flow.routes(),
        *hubspot_flow.routes(),
        *salesforce_routes.routes(),
        *hubspot_routes.routes(),
    ]

    app = Starlette(
        routes=routes,
        middleware=build_middleware(settings),
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.http_client = http_client
    app.state.flows = {"sf": salesforce_flow, "hs": hubspot_flow}
    return app


def main() -> None:
    load_env()
    settings = load_settings()
    app = create_app(settings)
    LOGGER.info("CRM proxy running at http://%s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
