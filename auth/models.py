from __future__ import annotations

from dataclasses import dataclass


@dataclass
class OAuthSession:
    state: str
    code_verifier: str | None
    created_at: float


@dataclass
class TokenRecord:
    access_token: str | None = None
    refresh_token: str | None = None
    instance_url: str | None = None
    expires_at: float | None = None

    @property
    def authenticated(self) -> bool:
        return bool(self.access_token)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.instance_url = None
        self.expires_at = None
