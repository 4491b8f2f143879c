from __future__ import annotations


class ProxyError(RuntimeError):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict | list | str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_payload(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class ConfigurationError(ProxyError):
    code = "CONFIGURATION_ERROR"
    status_code = 500

    def __init__(self, message: str, *, troubleshooting: list[str] | None = None) -> None:
        super().__init__(message)
        self.troubleshooting = troubleshooting or []


class CsrfError(ProxyError):
    code = "INVALID_STATE"
    status_code = 400


class ProviderAuthError(ProxyError):
    """Token endpoint rejected a grant; error and description are the provider's."""

    code = "PROVIDER_AUTH_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        error: str | None = None,
        http_status: int | None = None,
        details: dict | list | str | None = None,
    ) -> None:
        super().__init__(message, code=error or None, details=details)
        self.error = error
        self.http_status = http_status


class NotAuthenticatedError(ProxyError):
    code = "NOT_AUTHENTICATED"
    status_code = 401


class NoRefreshTokenError(ProxyError):
    code = "NO_REFRESH_TOKEN"
    status_code = 401


class ProviderApiError(ProxyError):
    code = "PROVIDER_ERROR"
    status_code = 500


class NetworkError(ProxyError):
    code = "NETWORK_ERROR"
    status_code = 502
