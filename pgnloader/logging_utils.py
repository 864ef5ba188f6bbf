import logging
import sys


def get_logger(name: str = "pgnloader", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


def set_level(level: int) -> None:
    for logger_name in list(logging.root.manager.loggerDict):
        if logger_name == "pgnloader" or logger_name.startswith("pgnloader."):
            logging.getLogger(logger_name).setLevel(level)
