import logging

from site_link import setup_logger


def test_setup_logger_single_console_handler():
    logger = setup_logger("site_link.test", "debug")
    setup_logger("site_link.test", "debug")

    try:
        streams = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
        assert len(streams) == 1
        assert logger.level == logging.DEBUG
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
