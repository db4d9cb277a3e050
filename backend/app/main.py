import contextlib
import logging.config
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import Settings, get_settings
from liveroom.realtime import Dispatcher, SignalingHub


def build_logging_config(level: str = "INFO") -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }
        },
        "root": {
            "handlers": ["default"],
            "level": level.upper(),
        },
        "loggers": {
            "liveroom.signaling.router": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False,
            }
        },
    }


def build_hub(settings: Settings) -> SignalingHub:
    return SignalingHub(
        ice_servers=settings.webrtc_ice_servers_payload,
        grace_seconds=settings.room_reconnect_grace_seconds,
        kick_close_delay_seconds=settings.kick_close_delay_seconds,
        kick_reason=settings.kick_reason,
        room_name_max_length=settings.room_name_max_length,
    )


def create_app(settings: Settings | None = None, hub: SignalingHub | None = None) -> FastAPI:
    """Build the service around a freshly constructed signaling hub."""

    settings = settings or get_settings()
    hub = hub or build_hub(settings)

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await hub.shutdown()

    application = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    application.state.settings = settings
    application.state.hub = hub
    application.state.dispatcher = Dispatcher(hub)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_origin_regex=settings.cors_allow_origin_regex,
    )

    @application.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok", "environment": settings.environment}

    application.include_router(api_router, prefix="/api")
    application.include_router(ws_router)
    application.include_router(metrics_router)
    return application


settings = get_settings()
logging.config.dictConfig(build_logging_config(settings.log_level))

app = create_app(settings)
