import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

_configured = False


def configure_logging(level: str = "INFO", log_file: Optional[str] = "cave.log") -> None:
    global _configured
    if _configured:
        return

    logger = logging.getLogger()
    logger.setLevel(level.upper())

    fmt = logging.Formatter(_FORMAT)

    # Console
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    # Rotating file (avoid filling SD card)
    if log_file:
        fh = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5
        )
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    # Silence noisy httpx request logging
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True
