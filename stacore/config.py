# Configuration settings should be set in app.config
# The STA class attributes hold the defaults, the environment is consulted last
import os
import logging
from flask import current_app
import stacore
from typing import Any, Optional


def get_config(option: str) -> Optional[Any]:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter
    :return: configuration value
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        # KeyError: not configured in the app, RuntimeError: no app context
        result = getattr(stacore.STA, option, os.environ.get(option, None))
    return result


def get_int_config(option: str) -> int:
    """
    :param option: configuration parameter
    :return: configuration value converted to int
    """
    return int(get_config(option))


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return stacore.log.getEffectiveLevel() < logging.INFO
