from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.errors import ProxyError
from auth.oauth_server import get_session_id

from .constants import DEFAULT_LIST_LIMIT, LOGGER, MAX_LIST_LIMIT, SALESFORCE_API_VERSION
from .http import Ok, ProviderApiClient


@dataclass(frozen=True)
class CrmObject:
    route: str
    remote_name: str
    list_fields: tuple[str, ...]


SALESFORCE_OBJECTS = (
    CrmObject(
        "contacts",
        "Contact",
        ("Id", "FirstName", "LastName", "Email", "Phone", "AccountId", "CreatedDate"),
    ),
    CrmObject(
        "leads",
        "Lead",
        ("Id", "FirstName", "LastName", "Email", "Company", "Status", "CreatedDate"),
    ),
    CrmObject("accounts", "Account", ("Id", "Name", "Type", "Industry", "CreatedDate")),
)

HUBSPOT_OBJECTS = (
    CrmObject("contacts", "contacts", ("firstname", "lastname", "email", "phone", "company")),
    CrmObject("leads", "leads", ("hs_lead_name", "hs_lead_type", "hs_lead_label")),
    CrmObject("accounts", "companies", ("name", "domain", "industry", "phone")),
)


class InvalidRequestError(ProxyError):
    code = "INVALID_REQUEST"
    status_code = 400


def parse_limit(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_LIST_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise InvalidRequestError("limit must be an integer.")
    return max(1, min(limit, MAX_LIST_LIMIT))


def _quote_id(object_id: str) -> str:
    return urllib.parse.quote(object_id, safe="")


def _provider_response(result: Ok) -> Response:
    if result.status_code == 204:
        return Response(status_code=204)
    return JSONResponse(result.data, status_code=result.status_code)


async def _read_json_object(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        raise InvalidRequestError("Request body must be valid JSON.")
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object.")
    return payload


class CrmRoutes:
    """Contact/Lead/Account pass-through endpoints for one provider."""

    objects: tuple[CrmObject, ...] = ()

    def __init__(self, api: ProviderApiClient) -> None:
        self.api = api

    @property
    def prefix(self) -> str:
        return f"/api/{self.api.flow.provider.key}"

    # -- provider specific -----------------------------------------------------

    def collection_path(self, obj: CrmObject) -> str:
        raise NotImplementedError

    def list_request(self, obj: CrmObject, limit: int) -> tuple[str, dict[str, Any]]:
        raise NotImplementedError

    def create_body(self, payload: dict) -> dict:
        return payload

    def update_body(self, payload: dict) -> dict:
        return payload

    def item_path(self, obj: CrmObject, object_id: str) -> str:
        return f"{self.collection_path(obj)}/{_quote_id(object_id)}"

    # -- operations ------------------------------------------------------------

    async def create(self, session_id: str | None, obj: CrmObject, payload: dict) -> Ok:
        return await self.api.request(
            session_id, "POST", self.collection_path(obj), json_body=self.create_body(payload)
        )

    async def list_records(self, session_id: str | None, obj: CrmObject, limit: int) -> Ok:
        path, params = self.list_request(obj, limit)
        return await self.api.request(session_id, "GET", path, params=params)

    async def get(self, session_id: str | None, obj: CrmObject, object_id: str) -> Ok:
        return await self.api.request(session_id, "GET", self.item_path(obj, object_id))

    async def update(
        self, session_id: str | None, obj: CrmObject, object_id: str, payload: dict
    ) -> Ok:
        return await self.api.request(
            session_id,
            "PATCH",
            self.item_path(obj, object_id),
            json_body=self.update_body(payload),
        )

    async def delete(self, session_id: str | None, obj: CrmObject, object_id: str) -> Ok:
        return await self.api.request(session_id, "DELETE", self.item_path(obj, object_id))

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        routes = []
        for obj in self.objects:
            collection = f"{self.prefix}/{obj.route}"
            item = f"{collection}/{{object_id}}"
            routes.extend(
                [
                    Route(
                        collection,
                        self._endpoint(self._handle_collection, obj),
                        methods=["GET", "POST"],
                    ),
                    Route(
                        item,
                        self._endpoint(self._handle_item, obj),
                        methods=["GET", "PUT", "PATCH", "DELETE"],
                    ),
                ]
            )
        return routes

    def _endpoint(self, handler, obj: CrmObject):
        async def endpoint(request: Request) -> Response:
            try:
                return await handler(request, obj)
            except ProxyError as error:
                LOGGER.warning(
                    "%s %s %s failed: %s %s",
                    self.api.provider_name,
                    request.method,
                    request.url.path,
                    error.code,
                    error.message,
                )
                return JSONResponse(error.to_payload(), status_code=error.status_code)
            except Exception:
                LOGGER.exception(
                    "%s %s %s failed", self.api.provider_name, request.method, request.url.path
                )
                return JSONResponse(
                    {
                        "success": False,
                        "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
                    },
                    status_code=500,
                )

        return endpoint

    async def _handle_collection(self, request: Request, obj: CrmObject) -> Response:
        session_id = get_session_id(request)
        if request.method == "POST":
            payload = await _read_json_object(request)
            return _provider_response(await self.create(session_id, obj, payload))

        limit = parse_limit(request.query_params.get("limit"))
        return _provider_response(await self.list_records(session_id, obj, limit))

    async def _handle_item(self, request: Request, obj: CrmObject) -> Response:
        session_id = get_session_id(request)
        object_id = request.path_params["object_id"]

        if request.method == "GET":
            return _provider_response(await self.get(session_id, obj, object_id))
        if request.method == "DELETE":
            return _provider_response(await self.delete(session_id, obj, object_id))

        payload = await _read_json_object(request)
        return _provider_response(await self.update(session_id, obj, object_id, payload))


class SalesforceRoutes(CrmRoutes):
    objects = SALESFORCE_OBJECTS

    def __init__(self, api: ProviderApiClient, *, api_version: str = SALESFORCE_API_VERSION) -> None:
        super().__init__(api)
        self.api_version = api_version

    def collection_path(self, obj: CrmObject) -> str:
        return f"/services/data/{self.api_version}/sobjects/{obj.remote_name}"

    def list_request(self, obj: CrmObject, limit: int) -> tuple[str, dict[str, Any]]:
        query = (
            f"SELECT {', '.join(obj.list_fields)} FROM {obj.remote_name} "
            f"ORDER BY CreatedDate DESC LIMIT {limit}"
        )
        return f"/services/data/{self.api_version}/query", {"q": query}


class HubSpotRoutes(CrmRoutes):
    objects = HUBSPOT_OBJECTS

    def collection_path(self, obj: CrmObject) -> str:
        return f"/crm/v3/objects/{obj.remote_name}"

    def list_request(self, obj: CrmObject, limit: int) -> tuple[str, dict[str, Any]]:
        return self.collection_path(obj), {
            "limit": limit,
            "properties": ",".join(obj.list_fields),
        }

    def create_body(self, payload: dict) -> dict:
        if "properties" in payload:
            return payload
        return {"properties": payload}

    def update_body(self, payload: dict) -> dict:
        return self.create_body(payload)
