from fastapi import FastAPI

from . import __version__
from .api import health

# Create FastAPI app
app = FastAPI(
    title="DCA Keeper",
    description="Health and control surface for the Sui DCA keeper",
    version=__version__,
    docs_url="/docs",
    redoc_url=None,
)

# Include routers
app.include_router(health.router, tags=["Health"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "DCA Keeper",
        "version": __version__,
        "health": "/health",
        "status": "/status",
    }
