"""Entry point for running the API server."""

import uvicorn

from chatmem.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "chatmem.api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
