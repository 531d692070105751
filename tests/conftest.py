import logging

import pytest


@pytest.fixture(autouse=True)
def reset_app_logger():
    """Detach handlers the CLI attached so later tests don't write to a closed runner stream."""
    yield
    logger = logging.getLogger('stalebranches')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
