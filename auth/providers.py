from __future__ import annotations

from dataclasses import dataclass, field

SALESFORCE_LOGIN_URL = "https://login.salesforce.com"
HUBSPOT_AUTH_URL = "https://app.hubspot.com"
HUBSPOT_API_BASE_URL = "https://api.hubapi.com"

SALESFORCE_SCOPES = ["api", "refresh_token", "id"]
HUBSPOT_SCOPES = [
    "oauth",
    "crm.objects.contacts.read",
    "crm.objects.contacts.write",
    "crm.objects.companies.read",
    "crm.objects.companies.write",
    "crm.objects.leads.read",
    "crm.objects.leads.write",
]


@dataclass(frozen=True)
class OAuthProvider:
    """Endpoints and credentials of one OAuth authorization server.

    ``key`` is the route prefix (``/api/{key}/auth/...``) and ``env_prefix``
    names the environment variables the credentials were read from, which is
    what troubleshooting messages point users at.
    """

    key: str
    name: str
    env_prefix: str
    client_id: str
    client_secret: str
    redirect_uri: str
    authorize_url: str
    token_url: str
    scopes: list[str] = field(default_factory=list)
    use_pkce: bool = False
    api_base_url: str | None = None
    token_path: str | None = None
    supports_password_grant: bool = False
    probe_authorize_url: bool = False

    def missing_settings(self) -> list[str]:
        missing = []
        if not self.client_id:
            missing.append(f"{self.env_prefix}_CLIENT_ID")
        if not self.client_secret:
            missing.append(f"{self.env_prefix}_CLIENT_SECRET")
        return missing

    @property
    def is_configured(self) -> bool:
        return not self.missing_settings()

    def token_url_for(self, instance_url: str | None) -> str:
        """Token endpoint to use once an instance URL is known.

        Salesforce accepts refresh grants on the org's own instance, so a
        stored ``instance_url`` wins over the login host it was issued from.
        """
        if instance_url and self.token_path:
            return f"{instance_url.rstrip('/')}{self.token_path}"
        return self.token_url


def salesforce_provider(
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    instance_url: str = SALESFORCE_LOGIN_URL,
    scopes: list[str] | None = None,
    probe_authorize_url: bool = True,
) -> OAuthProvider:
    base = instance_url.rstrip("/")
    return OAuthProvider(
        key="sf",
        name="Salesforce",
        env_prefix="SF",
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        authorize_url=f"{base}/services/oauth2/authorize",
        token_url=f"{base}/services/oauth2/token",
        token_path="/services/oauth2/token",
        scopes=scopes or list(SALESFORCE_SCOPES),
        use_pkce=True,
        supports_password_grant=True,
        probe_authorize_url=probe_authorize_url,
    )


def hubspot_provider(
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    auth_url: str = HUBSPOT_AUTH_URL,
    api_base_url: str = HUBSPOT_API_BASE_URL,
    scopes: list[str] | None = None,
) -> OAuthProvider:
    api_base = api_base_url.rstrip("/")
    return OAuthProvider(
        key="hs",
        name="HubSpot",
        env_prefix="HUBSPOT",
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        authorize_url=f"{auth_url.rstrip('/')}/oauth/authorize",
        token_url=f"{api_base}/oauth/v1/token",
        scopes=scopes or list(HUBSPOT_SCOPES),
        api_base_url=api_base,
    )
