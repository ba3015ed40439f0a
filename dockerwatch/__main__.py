"""Run the service with uvicorn: ``python -m dockerwatch``."""

import uvicorn

from dockerwatch.config import settings


def main() -> None:
    uvicorn.run(
        "dockerwatch.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
