"""Run the development server: ``python -m hookcast``."""
import uvicorn

from hookcast.config import get_settings

settings = get_settings()

uvicorn.run(
    "hookcast.main:app",
    host=settings.server_host,
    port=settings.server_port,
    reload=settings.debug,
)
