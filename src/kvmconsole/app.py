"""kvmconsole FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from kvmconsole.config import Settings
from kvmconsole.routes import health_router, tunnel_router, vms_router
from kvmconsole.services import (
    BridgeManager,
    InMemoryRegistry,
    PortResolver,
    SessionAdmission,
    VmRegistry,
)
from kvmconsole.services.bridge import Dialer

logger = logging.getLogger(__name__)


def create_registry(settings: Settings) -> VmRegistry:
    """Pick the VM registry backend from settings."""
    if settings.hypervisor_uri:
        # Optional dependency, only needed when a hypervisor is configured
        from kvmconsole.services.libvirt_registry import LibvirtRegistry

        return LibvirtRegistry(settings.hypervisor_uri)
    return InMemoryRegistry.from_json(settings.vms)


def create_app(
    settings: Settings | None = None,
    registry: VmRegistry | None = None,
    dialer: Dialer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()
    registry = registry or create_registry(settings)

    # Initialize core services
    resolver = PortResolver(
        registry,
        host=settings.display_host,
        base_port=settings.display_base_port,
    )
    bridges = BridgeManager(
        host=settings.display_host,
        max_sessions=settings.max_sessions,
        connect_timeout=settings.connect_timeout,
        chunk_size=settings.read_chunk_size,
        dialer=dialer,
    )
    admission = SessionAdmission(resolver, bridges)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("kvmconsole starting up")
        await registry.connect()

        yield

        await bridges.close()
        await registry.close()
        logger.info("kvmconsole shutting down")

    console_app = FastAPI(
        title="kvmconsole",
        description="WebSocket tunnel to virtual machine VNC consoles",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store services in app.state for dependency injection
    console_app.state.settings = settings
    console_app.state.registry = registry
    console_app.state.resolver = resolver
    console_app.state.bridges = bridges
    console_app.state.admission = admission

    # Include routers
    console_app.include_router(tunnel_router)
    console_app.include_router(vms_router)
    console_app.include_router(health_router)

    return console_app
