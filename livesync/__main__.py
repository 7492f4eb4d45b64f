"""Run the relay server: python -m livesync"""
import uvicorn

from livesync.config import get_settings
from livesync.logging_setup import configure_logging


def main() -> None:
    configure_logging()
    settings = get_settings()
    uvicorn.run(
        "livesync.main:app",
        host=settings.RELAY_HOST,
        port=settings.RELAY_PORT,
        log_config=None,
    )


if __name__ == "__main__":
    main()
