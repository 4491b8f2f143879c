from crmproxy.crud import HUBSPOT_OBJECTS, parse_limit
from tests.oauth_helpers import (
    HS_API_URL,
    HS_TOKEN_URL,
    ORG_TOKEN_URL,
    ORG_URL,
    authenticate,
    json_data,
    start_login,
)

SOBJECTS_URL = f"{ORG_URL}/services/data/v58.0/sobjects"
QUERY_URL = f"{ORG_URL}/services/data/v58.0/query"
CONTACT_ID = "003000000000001"


def _authenticate_hubspot(test_client, stub) -> None:
    stub.add("POST", HS_TOKEN_URL, json_body={"access_token": "H1", "refresh_token": "HR1"})
    state = start_login(test_client, "hs")["state"][0]
    response = test_client.get(
        "/api/hs/auth/callback",
        params={"code": "abc", "state": state},
        follow_redirects=False,
    )
    assert response.headers["location"] == "/?auth=success"


def test_get_contact_after_expired_token(app_client, stub) -> None:
    authenticate(app_client, stub)
    contact = {
        "attributes": {"type": "Contact"},
        "Id": CONTACT_ID,
        "FirstName": "Ada",
        "LastName": "Lovelace",
    }
    contact_url = f"{SOBJECTS_URL}/Contact/{CONTACT_ID}"
    stub.add("GET", contact_url, status_code=401, json_body=[{"errorCode": "INVALID_SESSION_ID"}])
    stub.add("GET", contact_url, json_body=contact)
    stub.add("POST", ORG_TOKEN_URL, json_body={"access_token": "T2"})

    response = app_client.get(f"/api/sf/contacts/{CONTACT_ID}")

    assert response.status_code == 200
    assert response.json() == contact
    gets = stub.calls("GET", contact_url)
    assert [request.headers["authorization"] for request in gets] == ["Bearer T1", "Bearer T2"]
    assert len(stub.calls("POST", ORG_TOKEN_URL)) == 1


def test_crud_requires_authentication(app_client, stub) -> None:
    response = app_client.post("/api/sf/leads", json={"LastName": "Doe", "Company": "Acme"})

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": {"code": "NOT_AUTHENTICATED", "message": "Not authenticated with Salesforce"},
    }
    assert stub.requests == []


def test_create_passes_provider_response_through(app_client, stub) -> None:
    authenticate(app_client, stub)
    created = {"id": "00Q000000000001", "success": True, "errors": []}
    stub.add("POST", f"{SOBJECTS_URL}/Lead", status_code=201, json_body=created)

    response = app_client.post("/api/sf/leads", json={"LastName": "Doe", "Company": "Acme"})

    assert response.status_code == 201
    assert response.json() == created
    sent = stub.calls("POST", f"{SOBJECTS_URL}/Lead")[0]
    assert json_data(sent) == {"LastName": "Doe", "Company": "Acme"}


def test_list_runs_soql_query(app_client, stub) -> None:
    authenticate(app_client, stub)
    stub.add("GET", QUERY_URL, json_body={"totalSize": 0, "done": True, "records": []})

    response = app_client.get("/api/sf/accounts", params={"limit": "5"})

    assert response.status_code == 200
    assert response.json()["records"] == []
    query = stub.calls("GET", QUERY_URL)[0].url.params["q"]
    assert query.startswith("SELECT Id, Name")
    assert "FROM Account" in query
    assert query.endswith("ORDER BY CreatedDate DESC LIMIT 5")


def test_list_limit_must_be_integer(app_client, stub) -> None:
    authenticate(app_client, stub)
    calls_before = len(stub.requests)

    response = app_client.get("/api/sf/contacts", params={"limit": "ten"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"
    assert len(stub.requests) == calls_before


def test_parse_limit_bounds() -> None:
    assert parse_limit(None) == 10
    assert parse_limit("0") == 1
    assert parse_limit("5000") == 200


def test_update_sends_patch(app_client, stub) -> None:
    authenticate(app_client, stub)
    account_url = f"{SOBJECTS_URL}/Account/001000000000001"
    stub.add("PATCH", account_url, status_code=204)

    response = app_client.put("/api/sf/accounts/001000000000001", json={"Industry": "Energy"})

    assert response.status_code == 204
    assert json_data(stub.calls("PATCH", account_url)[0]) == {"Industry": "Energy"}


def test_delete_returns_no_content(app_client, stub) -> None:
    authenticate(app_client, stub)
    contact_url = f"{SOBJECTS_URL}/Contact/{CONTACT_ID}"
    stub.add("DELETE", contact_url, status_code=204)

    response = app_client.delete(f"/api/sf/contacts/{CONTACT_ID}")

    assert response.status_code == 204
    assert response.content == b""


def test_invalid_json_body(app_client, stub) -> None:
    authenticate(app_client, stub)
    calls_before = len(stub.requests)

    response = app_client.post(
        "/api/sf/contacts",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"
    assert len(stub.requests) == calls_before


def test_provider_not_found_passes_status_through(app_client, stub) -> None:
    authenticate(app_client, stub)
    contact_url = f"{SOBJECTS_URL}/Contact/missing"
    stub.add(
        "GET",
        contact_url,
        status_code=404,
        json_body=[{"errorCode": "NOT_FOUND", "message": "The requested resource does not exist"}],
    )

    response = app_client.get("/api/sf/contacts/missing")

    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "NOT_FOUND"
    assert error["message"] == "The requested resource does not exist"
    assert error["details"]["providerCode"] == "NOT_FOUND"


def test_provider_server_error_becomes_500(app_client, stub) -> None:
    authenticate(app_client, stub)
    stub.add("GET", QUERY_URL, status_code=503, text="maintenance")

    response = app_client.get("/api/sf/contacts")

    assert response.status_code == 500
    assert response.json()["error"]["message"] == "HTTP 503 Service Unavailable"


def test_hubspot_accounts_map_to_companies(app_client, stub) -> None:
    _authenticate_hubspot(app_client, stub)
    companies_url = f"{HS_API_URL}/crm/v3/objects/companies"
    stub.add("POST", companies_url, status_code=201, json_body={"id": "1", "properties": {}})

    response = app_client.post("/api/hs/accounts", json={"name": "Acme", "domain": "acme.test"})

    assert response.status_code == 201
    sent = stub.calls("POST", companies_url)[0]
    assert sent.headers["authorization"] == "Bearer H1"
    assert json_data(sent) == {"properties": {"name": "Acme", "domain": "acme.test"}}


def test_hubspot_list_sends_limit_and_properties(app_client, stub) -> None:
    _authenticate_hubspot(app_client, stub)
    contacts_url = f"{HS_API_URL}/crm/v3/objects/contacts"
    stub.add("GET", contacts_url, json_body={"results": []})

    response = app_client.get("/api/hs/contacts")

    assert response.json() == {"results": []}
    params = stub.calls("GET", contacts_url)[0].url.params
    assert params["limit"] == "10"
    assert params["properties"] == "firstname,lastname,email,phone,company"


def test_hubspot_update_keeps_wrapped_properties(app_client, stub) -> None:
    _authenticate_hubspot(app_client, stub)
    contact_url = f"{HS_API_URL}/crm/v3/objects/contacts/51"
    stub.add("PATCH", contact_url, json_body={"id": "51"})

    app_client.patch("/api/hs/contacts/51", json={"properties": {"phone": "555"}})

    assert json_data(stub.calls("PATCH", contact_url)[0]) == {"properties": {"phone": "555"}}


def test_providers_are_authenticated_separately(app_client, stub) -> None:
    authenticate(app_client, stub)

    response = app_client.get("/api/hs/contacts")

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Not authenticated with HubSpot"


def test_hubspot_login_requests_scopes_for_every_object(app_client) -> None:
    scopes = start_login(app_client, "hs")["scope"][0].split()

    for obj in HUBSPOT_OBJECTS:
        assert f"crm.objects.{obj.remote_name}.read" in scopes
        assert f"crm.objects.{obj.remote_name}.write" in scopes
