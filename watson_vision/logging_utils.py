import logging

PACKAGE_LOGGER = "watson_vision"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(camera)s] %(message)s"


class CameraNameFilter(logging.Filter):
    def __init__(self, camera_name: str):
        super().__init__()
        self.camera_name = camera_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.camera = self.camera_name
        return True


def setup_logger(camera_name: str, level: int | str = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(CameraNameFilter(camera_name))
        logger.addHandler(handler)

    return logger


def add_file_handler(logger: logging.Logger, camera_name: str, log_path: str) -> None:
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CameraNameFilter(camera_name))
    logger.addHandler(handler)
