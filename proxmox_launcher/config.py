from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


CURRENT_SNAPSHOT = "current"


class RevertPolicy(str, Enum):
    AFTER_CONNECT = "AFTER_CONNECT"
    BEFORE_JOB = "BEFORE_JOB"

    @property
    def label(self) -> str:
        return {
            RevertPolicy.AFTER_CONNECT: "After connect to the virtual machine",
            RevertPolicy.BEFORE_JOB: "Before every job executing on the virtual machine",
        }[self]


class DatacenterConfig(BaseModel):
    name: str
    api_url: str
    username: str | None = None
    password: str | None = None
    realm: str = Field(default="pam")
    api_token: str | None = None
    verify_ssl: bool = Field(default=True)

    @model_validator(mode="after")
    def _check_credentials(self) -> "DatacenterConfig":
        if not self.api_token and not (self.username and self.password):
            raise ValueError(
                f"datacenter {self.name} needs api_token or username/password"
            )
        return self


class SlotConfig(BaseModel):
    name: str
    datacenter: str
    node: str
    vm_id: int = Field(ge=1)
    snapshot_name: str = Field(default=CURRENT_SNAPSHOT)
    start_vm: bool = Field(default=True)
    settle_delay_sec: float = Field(default=0, ge=0)
    revert_policy: RevertPolicy = Field(default=RevertPolicy.AFTER_CONNECT)
    connector: str = Field(default="inbound")
    jenkins_node: str | None = Field(default=None)
    connect_command: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_connector(self) -> "SlotConfig":
        if self.connector not in {"inbound", "command"}:
            raise ValueError(
                f"unsupported connector {self.connector}; expected inbound or command"
            )
        if self.connector == "command" and not self.connect_command:
            raise ValueError(f"slot {self.name} needs connect_command")
        return self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PROXMOX_LAUNCHER_",
        env_file=".env",
        env_parse_none_str="null",
        extra="ignore",
    )

    datacenters: list[DatacenterConfig] = Field(default_factory=list)
    slots: list[SlotConfig] = Field(default_factory=list)

    retry_attempts: int = Field(default=3, ge=1)
    retry_sleep_sec: int = Field(default=2, ge=0)
    http_timeout_sec: float = Field(default=10.0, gt=0)

    task_poll_interval_sec: float = Field(default=1.0, gt=0)
    task_timeout_sec: float | None = Field(default=600.0, gt=0)

    jenkins_url: str | None = Field(default=None)
    jenkins_user: str = Field(default="admin")
    jenkins_api_token: str = Field(default="admin")
    connect_deadline_sec: int = Field(default=240, ge=1)
    connect_poll_interval_sec: float = Field(default=5.0, gt=0)

    api_auth_token: str | None = Field(default=None)
    log_level: str = Field(default="INFO")
    disable_slot_wiring: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
