"""FastAPI application factory and configuration."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from exclusive_listings import __version__
from exclusive_listings.api.dependencies import close_blob_store, get_settings
from exclusive_listings.api.routes import listings, maintenance, photos
from exclusive_listings.services.media_service import shutdown_transcode_executor


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Release shared workers and connections when the server stops."""
    yield
    # Wait for in-flight photo transcodes before exiting
    shutdown_transcode_executor()
    close_blob_store()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="exclusive-listings API",
        description="Exclusive real-estate listings: id allocation and photo management",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Serve stored photos from the blob store root
    storage = get_settings().storage
    app.mount(
        "/media",
        StaticFiles(directory=str(storage.root), check_dir=False),
        name="media",
    )

    # Include API routers
    app.include_router(listings.router, prefix="/api/listings", tags=["listings"])
    app.include_router(photos.router, prefix="/api/listings", tags=["photos"])
    app.include_router(maintenance.router, prefix="/api/maintenance", tags=["maintenance"])

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


# Create app instance for uvicorn
app = create_app()
