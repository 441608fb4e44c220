from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field
from pydantic import ValidationError as SchemaError
from pydantic_settings import BaseSettings, SettingsConfigDict

from console_gateway.errors import ConfigurationError


TYPE_MESSAGES = {
    "int_parsing": "must be an integer",
    "int_from_float": "must be an integer",
    "float_parsing": "must be a number",
    "bool_parsing": "must be true or false",
}


def _is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
        # .port raises for a non-numeric or out-of-range port.
        return (
            parsed.scheme in {"http", "https"}
            and bool(parsed.hostname)
            and parsed.port != 0
        )
    except ValueError:
        return False


def _describe(error: dict) -> str:
    field = str(error["loc"][0]).upper() if error.get("loc") else "CONFIGURATION"
    if error["type"] in TYPE_MESSAGES:
        return f"{field} {TYPE_MESSAGES[error['type']]}"
    if error["type"] == "greater_than_equal":
        return f"{field} must be at least {error['ctx']['ge']}"
    return f"{field} is invalid: {error['msg']}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    proxmox_host: str = Field(default="https://localhost:8006")
    console_host: str = Field(default="http://localhost:8080")

    read_timeout_ms: int = Field(default=10000)
    api_timeout_ms: int = Field(default=30000)
    refresh_interval_sec: int = Field(default=30)

    verify_tls: bool = Field(default=True)
    retry_attempts: int = Field(default=1, ge=1)
    retry_sleep_sec: float = Field(default=1.0, ge=0)

    debug_logging: bool = Field(default=False)

    @property
    def upstream_api_url(self) -> str:
        return f"{self.proxmox_host.rstrip('/')}/api2/json"

    @property
    def read_timeout_sec(self) -> float:
        return self.read_timeout_ms / 1000

    @property
    def action_timeout_sec(self) -> float:
        return self.api_timeout_ms / 1000

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if not _is_valid_url(self.proxmox_host):
            errors.append("PROXMOX_HOST must be a valid URL")
        if not _is_valid_url(self.console_host):
            errors.append("CONSOLE_HOST must be a valid URL")
        if self.read_timeout_ms < 1000:
            errors.append("READ_TIMEOUT_MS must be at least 1000ms")
        if self.api_timeout_ms < 1000:
            errors.append("API_TIMEOUT_MS must be at least 1000ms")
        if self.refresh_interval_sec < 5:
            errors.append("REFRESH_INTERVAL_SEC must be at least 5 seconds")
        return errors

    def validate_runtime(self) -> None:
        errors = self.validation_errors()
        if errors:
            raise ConfigurationError(errors)

    def client_config(self) -> dict:
        return {
            "console": {"host": self.console_host},
            "dashboard": {"refreshInterval": self.refresh_interval_sec},
            "app": {"debugLogging": self.debug_logging},
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings, reporting unparseable values as a ConfigurationError."""
    try:
        return Settings()
    except SchemaError as exc:
        raise ConfigurationError([_describe(error) for error in exc.errors()]) from exc
