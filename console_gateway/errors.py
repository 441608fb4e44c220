class GatewayError(RuntimeError):
    kind = "gateway_error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, detail: str | None = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_payload(self) -> dict:
        payload = {"error": self.message, "kind": self.kind}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class NotAuthenticated(GatewayError):
    kind = "not_authenticated"
    default_message = "Missing authentication"


class InvalidCredentials(GatewayError):
    kind = "invalid_credentials"
    default_message = (
        "Invalid username or password. Please check your credentials and realm."
    )


class UpstreamUnreachable(GatewayError):
    kind = "upstream_unreachable"
    default_message = (
        "Cannot connect to Proxmox server. Please check if the server is running."
    )


class UpstreamTrustError(GatewayError):
    kind = "upstream_trust_error"
    default_message = "SSL certificate error. Please check Proxmox SSL configuration."


class UpstreamError(GatewayError):
    kind = "upstream_error"
    default_message = "Upstream request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, detail=detail)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


class ValidationError(GatewayError):
    kind = "validation_error"
    default_message = "Action not allowed"


class ConfigurationError(GatewayError):
    kind = "configuration_error"
    default_message = "Invalid configuration"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(detail="; ".join(self.errors))

    def to_payload(self) -> dict:
        return {"error": self.message, "kind": self.kind, "details": self.errors}


# Errors an authenticate call may end in; each maps to one fixed user message.
AUTH_ERRORS = (InvalidCredentials, UpstreamUnreachable, UpstreamTrustError, UpstreamError)
