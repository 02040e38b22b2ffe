import logging
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

LOG_LEVEL = logging.DEBUG
LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
}
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

tank_handler = None


def set_logging_level(level):
    """
    Sets the logging level for the root logger.

    Used by the command line's ``--log-level`` option; the stream and tank handlers keep
    their own level, so the root logger decides what reaches them.

    Args:
        level (int): One of the values of :data:`LOG_LEVELS`.
    """
    if not isinstance(level, int):
        raise ValueError('Logging level must be an integer.')
    if level not in LOG_LEVELS.values():
        raise ValueError(f'Invalid logging level. Use one of {", ".join(LOG_LEVELS)}.')

    logging.getLogger().setLevel(level)


def qt_message_handler(mode, context, message):
    """
    Converts Qt messages to standard Python logging.
    """
    logger = logging.getLogger('Qt')

    message = message.strip()

    if mode == QtMsgType.QtDebugMsg:
        logger.debug(message)
    elif mode == QtMsgType.QtInfoMsg:
        logger.info(message)
    elif mode == QtMsgType.QtWarningMsg:
        logger.warning(message)
    elif mode == QtMsgType.QtCriticalMsg:
        logger.error(message)
    elif mode == QtMsgType.QtFatalMsg:
        logger.critical(message)
        sys.exit(1)


def setup_logging():
    """
    Configures the root logger and installs Qt message handler.

    Records go to stderr so command output on stdout stays parseable, and to the tank.
    """
    global tank_handler

    root_logger = logging.getLogger()
    root_logger.setLevel(LOG_LEVEL)

    # Clear all handlers to avoid formatting conflicts
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(LOG_LEVEL)
    root_logger.addHandler(stream_handler)

    tank_handler = TankHandler()
    tank_handler.setFormatter(formatter)
    tank_handler.setLevel(LOG_LEVEL)
    root_logger.addHandler(tank_handler)

    qInstallMessageHandler(qt_message_handler)


class TankHandler(logging.Handler):
    """
    Custom logging handler that stores formatted log messages in an in-memory tank.

    The sync log is kept around so a status view can show what the last push or pull did
    without the user digging through stdout.

    Attributes:
        tank (list[tuple[int, str]]): A list of tuples each containing a log level and the
            corresponding formatted log message.
        capacity (int): Oldest messages are dropped once the tank holds this many.
    """

    def __init__(self, capacity=5000):
        super().__init__()
        self.tank = []
        self.capacity = capacity

    def emit(self, record):
        """
        Converts a log record to a formatted message and stores it in the tank.

        Args:
            record (logging.LogRecord): The log record to be processed.
        """
        try:
            message = self.format(record)
            self.tank.append((record.levelno, message))
            if len(self.tank) > self.capacity:
                del self.tank[:len(self.tank) - self.capacity]
        except (Exception, KeyboardInterrupt):
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET):
        """
        Returns the list of stored log messages filtered by a minimum logging level.

        Args:
            level (int, optional): The minimum logging level. Defaults to logging.NOTSET.

        Returns:
            list[str]: A list of formatted log messages with a level >= the specified level.
        """
        return [msg for lvl, msg in self.tank if lvl >= level]

    def clear_logs(self):
        """
        Clears all the stored log messages from the tank.
        """
        self.tank.clear()
