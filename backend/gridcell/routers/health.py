"""Health check endpoint."""

from fastapi import APIRouter, Request

from gridcell import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    """Report whether the ingest service is running."""
    ingest = getattr(request.app.state, "ingest", None)
    return {
        "status": "ok",
        "version": __version__,
        "ingesting": ingest is not None,
        "pending": ingest.pending if ingest is not None else 0,
    }
