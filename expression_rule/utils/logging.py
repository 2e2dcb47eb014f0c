from loguru import logger
import sys
import os
from typing import Optional


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure logging:
    - stdout: always
    - file: optional, with rotation (10MB, 7 backups)
    """
    logger.remove()

    # Console output
    logger.add(sys.stdout, level=level, backtrace=False, diagnose=False)

    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        logger.add(
            log_file,
            level=level,
            rotation="10 MB",    # Rotate at 10MB
            retention=7,          # Keep 7 files
            compression="gz",     # Compress old logs
            backtrace=True,
            diagnose=True,
            enqueue=True          # Async logging (thread-safe)
        )
        logger.info(f"Logging configured: console + file ({log_file})")
    else:
        logger.info("Logging configured: console")

    return logger
