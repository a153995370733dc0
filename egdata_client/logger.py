import logging
import sys
from pathlib import Path

import appdirs

APP_NAME = "EGData-Client"
APP_AUTHOR = "egdata"


def get_log_path(log_file_name="egdata_client.log") -> Path:
    """Location of the client log file inside the per-user log directory."""
    return Path(appdirs.user_log_dir(APP_NAME, APP_AUTHOR)) / log_file_name


def setup_logger(log_file_name="egdata_client.log"):
    """
    Setups the initial logger.
    param: log_file_name: filename to be used for the logfile.
    return: logger instance created.
    """
    logger = logging.getLogger("EGDataClient")

    # Check if the logger has already been configured
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        log_format = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(log_format)
        logger.addHandler(console_handler)

        log_file_path = get_log_path(log_file_name)
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        except OSError as e:
            logger.warning(f"File logging disabled, cannot open {log_file_path}: {e}")
        else:
            file_handler.setFormatter(log_format)
            logger.addHandler(file_handler)

        # Prevent propagation to avoid duplicate logs
        logger.propagate = False

    return logger

