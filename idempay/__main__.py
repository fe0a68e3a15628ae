"""
python -m idempay — serve the API with uvicorn.
"""

import uvicorn

from idempay.api import create_app
from idempay.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.app_host,
        port=settings.app_port,
        timeout_graceful_shutdown=int(settings.graceful_timeout.total_seconds()),
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
