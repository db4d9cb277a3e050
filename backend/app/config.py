import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Iterable, List

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class IceServer(BaseModel):
    """Representation of a WebRTC ICE server configuration."""

    urls: list[str] = Field(default_factory=list, description="ICE server URLs")
    username: str | None = Field(default=None, description="Optional TURN username")
    credential: str | None = Field(default=None, description="Optional TURN credential")

    @field_validator("urls", mode="before")
    @classmethod
    def ensure_list(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple, set)):
            return [str(item) for item in value]
        return [] if value in (None, Ellipsis) else [str(value)]


class Settings(BaseSettings):
    """Service settings loaded from environment variables and ``.env``."""

    app_name: str = Field(default="Liveroom Signaling", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    host: str = Field(default="0.0.0.0", description="Interface the server binds to")
    port: int = Field(default=8088, description="Port the server listens on")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:8080",
            "http://127.0.0.1",
            "http://127.0.0.1:8080",
        ],
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        description="Optional regular expression that matches allowed CORS origins",
    )

    webrtc_ice_servers: Annotated[list[IceServer], NoDecode] = Field(
        default_factory=list,
        description="List of ICE (STUN/TURN) servers handed to clients on register.",
    )
    webrtc_stun_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Additional STUN endpoints exposed to clients.",
    )
    webrtc_turn_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="TURN endpoints exposed to clients.",
    )
    webrtc_turn_username: str | None = Field(default=None, description="Optional TURN username.")
    webrtc_turn_credential: str | None = Field(default=None, description="Optional TURN credential.")

    room_reconnect_grace_seconds: float = Field(
        default=20.0,
        gt=0,
        description="How long a room survives its broadcaster's disconnect awaiting a rejoin.",
    )
    room_name_max_length: int = Field(default=128, ge=1, description="Maximum room name length.")
    kick_close_delay_seconds: float = Field(
        default=0.25,
        ge=0,
        description="Delay between the kicked notice and closing the socket.",
    )
    kick_reason: str = Field(
        default="You have been removed from the room by the broadcaster",
        description="Reason sent to kicked viewers.",
    )

    websocket_keepalive_timeout_seconds: float | None = Field(
        default=None,
        description="Idle receive timeout before a keepalive ping is considered; unset disables pings.",
    )
    websocket_keepalive_ping_interval_seconds: float | None = Field(
        default=None,
        description="Minimum interval between keepalive pings on an idle socket.",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[1] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator(
        "webrtc_ice_servers",
        "webrtc_stun_servers",
        "webrtc_turn_servers",
        mode="before",
    )
    @classmethod
    def parse_iterable_field(cls, value: Any) -> list[Any] | Any:
        if value in (None, "", Ellipsis):
            return []
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                return [item.strip() for item in value.split(",") if item.strip()]
            if isinstance(parsed, (list, tuple, set)):
                return list(parsed)
            return [parsed]
        if isinstance(value, (list, tuple, set)):
            return list(value)
        return [value]

    def _aggregate_ice_servers(self) -> list[IceServer]:
        def coerce_server(entry: Any) -> IceServer | None:
            if isinstance(entry, IceServer):
                return entry
            if isinstance(entry, dict):
                return IceServer.model_validate(entry)
            if isinstance(entry, str):
                return IceServer(urls=[entry])
            if isinstance(entry, Iterable):
                return IceServer(urls=[str(item) for item in entry])
            return None

        servers: list[IceServer] = []
        for item in self.webrtc_ice_servers:
            server = coerce_server(item)
            if server is not None:
                servers.append(server)

        if self.webrtc_stun_servers:
            servers.append(IceServer(urls=[str(url) for url in self.webrtc_stun_servers]))

        if self.webrtc_turn_servers:
            servers.append(
                IceServer(
                    urls=[str(url) for url in self.webrtc_turn_servers],
                    username=self.webrtc_turn_username,
                    credential=self.webrtc_turn_credential,
                )
            )

        if not servers:
            servers.append(IceServer(urls=["stun:stun.l.google.com:19302"]))

        return servers

    @property
    def webrtc_ice_servers_payload(self) -> list[dict[str, Any]]:
        """ICE servers in the shape browsers pass to ``RTCPeerConnection``."""

        return [
            server.model_dump(mode="json", exclude_none=True)
            for server in self._aggregate_ice_servers()
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
