"""Context memory server entry point.

Run with:
    python -m mcp_server.server
"""

import uvicorn

from api.app import create_app
from core.config import settings
from core.logging_config import configure_logging


def main() -> None:
    configure_logging(settings.log_level, json_output=settings.log_json)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
