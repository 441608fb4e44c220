from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FakeUpstreamSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FAKE_UPSTREAM_", extra="ignore")

    bind_host: str = Field(default="0.0.0.0")
    bind_port: int = Field(default=8006, ge=1)

    username: str = Field(default="root@pam")
    password: str = Field(default="secret")

    nodes_csv: str = Field(default="pve1,pve2")
    supports_containers: bool = Field(default=True)

    @property
    def node_names(self) -> list[str]:
        return [x.strip() for x in self.nodes_csv.split(",") if x.strip()]


@lru_cache(maxsize=1)
def get_settings() -> FakeUpstreamSettings:
    return FakeUpstreamSettings()
