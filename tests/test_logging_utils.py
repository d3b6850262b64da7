import logging

from watson_vision.logging_utils import PACKAGE_LOGGER, CameraNameFilter, add_file_handler, setup_logger


def test_camera_filter_stamps_record():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
    assert CameraNameFilter("front").filter(record)
    assert record.camera == "front"


def test_setup_logger_installs_single_handler():
    logger = setup_logger("front", "DEBUG")
    count = len(logger.handlers)
    setup_logger("front", "DEBUG")

    assert logger.name == PACKAGE_LOGGER
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == count


def test_file_handler_writes_camera_name(tmp_path):
    logger = logging.getLogger("watson_vision.test_file_sink")
    logger.setLevel(logging.INFO)
    log_path = tmp_path / "vision.log"
    add_file_handler(logger, "rear", str(log_path))
    try:
        logger.info("session started")
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

    text = log_path.read_text()
    assert "[rear] session started" in text
