"""
Logging configuration for the readlog API and admin CLI.
"""

import logging
import sys

# Chatty third-party loggers kept at WARNING unless debugging.
NOISY_LOGGERS = ('aiosqlite', 'engineio.server', 'socketio.server')


def setup_logging(debug: bool = False) -> logging.Logger:
    """
    Configure application logging.

    With ``debug`` set, per-event recorder messages and the driver chatter
    listed in ``NOISY_LOGGERS`` come through as well.

    :param debug: Lower the level to DEBUG
    :type debug: bool
    :return: Root logger for the readlog application
    :rtype: logging.Logger
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    return logging.getLogger('readlog')


def get_logger(name: str) -> logging.Logger:
    """
    Namespaced logger, e.g. ``get_logger('services.rebuilder')`` -> ``readlog.services.rebuilder``.

    :param name: Dotted module name below ``readlog``
    :type name: str
    :rtype: logging.Logger
    """
    return logging.getLogger(f'readlog.{name}')
