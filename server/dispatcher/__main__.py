"""Run the dispatcher with uvicorn on the configured host and port."""

import uvicorn

from dispatcher.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "dispatcher.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
