from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.fastapi_router import router as http_router
from .api.websocket import router as ws_router, terminal_ws
from .config import GatewayConfig, load_config
from .gateway import SessionGateway


def create_app(
    config: Optional[GatewayConfig] = None,
    *,
    gateway: Optional[SessionGateway] = None,
) -> FastAPI:
    """Build the FastAPI application serving the terminal gateway.

    Without an explicit gateway the process-wide one from `get_gateway` is
    used, created on startup with this app's config.
    """
    config = gateway.config if gateway is not None else (config or load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "gateway", None) is None:
            from . import get_gateway

            app.state.gateway = await get_gateway(config=config)
        yield
        await app.state.gateway.shutdown()

    app = FastAPI(title="lab_shells", lifespan=lifespan)
    app.state.config = config
    app.state.gateway = gateway
    app.include_router(http_router)
    app.include_router(ws_router)
    app.add_api_websocket_route(config.ws_path, terminal_ws)
    return app
