import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

load_dotenv()

LOGGER_NAME = "pcb_registration"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(
    level: Optional[Union[int, str]] = None,
    log_file: Optional[Union[str, Path]] = None
) -> logging.Logger:
    """Setup function for the package logger"""
    logger = logging.getLogger(LOGGER_NAME)

    if level is None:
        level = os.getenv("PCB_REGISTRATION_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    # Avoid adding duplicate handlers if setup is called multiple times
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        existing = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        if not any(Path(h.baseFilename) == log_path.resolve() for h in existing):
            file_handler = logging.FileHandler(str(log_path))
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
