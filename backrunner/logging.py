import logging

logger = logging.getLogger("backrunner")
