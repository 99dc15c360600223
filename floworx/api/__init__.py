"""FloWorx HTTP API."""

from __future__ import annotations

import os


def main() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "floworx.api.app:app",
        host=os.getenv("FLOWORX_HOST", "127.0.0.1"),
        port=int(os.getenv("FLOWORX_PORT", "8000")),
        reload=os.getenv("FLOWORX_ENV", "development") == "development",
    )
