import logging
from typing import Optional

PACKAGE_LOGGER = "tiled_splatting"


def create_logger(name: Optional[str] = None, level:int = logging.INFO) -> logging.Logger:
  """ Module loggers are children of the package logger, which owns the single handler """
  package_logger = logging.getLogger(PACKAGE_LOGGER)
  if not package_logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    handler.setFormatter(formatter)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)

  return logging.getLogger(name) if name is not None else package_logger
