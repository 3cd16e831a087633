"""Run the API with uvicorn: ``python -m pricetracker``."""

import uvicorn

from pricetracker.core.config import settings


def main() -> None:
    uvicorn.run(
        "pricetracker.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_config=None,
    )


if __name__ == "__main__":
    main()
