import logging

import uvicorn

from kvmconsole.app import create_app
from kvmconsole.config import Settings

__all__ = ["create_app", "main"]


def main() -> None:
    """Run the console tunnel with uvicorn."""
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "kvmconsole.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        ws="websockets",
    )
