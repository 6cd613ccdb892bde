import logging
import os

# Logs live next to the tests regardless of the working directory
log_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs")
os.makedirs(log_dir, exist_ok=True)


def setup_logging(test_name: str, level: int = logging.INFO) -> logging.Logger:
    """Sets up and returns a separate logger for each test file, writing to
    `tests/logs/<test_name>.log` and never to the console."""
    logger = logging.getLogger(test_name)
    logger.setLevel(level)
    logger.propagate = False

    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = logging.FileHandler(os.path.join(log_dir, f"{test_name}.log"), mode="w")
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    )
    logger.addHandler(file_handler)

    return logger
