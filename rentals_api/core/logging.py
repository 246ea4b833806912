import logging

from rentals_api.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
