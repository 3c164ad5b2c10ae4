from __future__ import annotations

import uvicorn
from devkit.observability import configure_logging

from location_service.config import load_location_settings


def main() -> None:
    settings = load_location_settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(
        "location_service.app:app",
        host=settings.LOCATION_SERVICE_HOST,
        port=settings.LOCATION_SERVICE_PORT,
        reload=False,
    )


if __name__ == "__main__":
    main()
