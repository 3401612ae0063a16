"""Ratebook Smart Import - layout detection and rate extraction for lease ratebooks."""

from ratebook_import.api import app, create_app

__all__ = ["app", "create_app"]
__version__ = "0.1.0"


def main() -> None:
    """Run the FastAPI server using uvicorn."""
    import uvicorn

    from ratebook_import.config import settings

    uvicorn.run(
        "ratebook_import.api:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
    )
