"""
Shared Logging Functionality

Configures the application logger once (console and optional file output)
and hands out child loggers to the rest of the code base.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Optional, Union

# Between INFO and WARNING: "found something worth acting on".
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")


class LoggingManager:
    """
    Configures one named logger and retrieves loggers by name.
    """

    DEFAULT_LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)8s | %(message)s"
    DEFAULT_LOG_LEVEL = logging.INFO

    def __init__(self,
                 logger_name: str,
                 log_level: Union[int, str, None] = None,
                 log_format: str = DEFAULT_LOG_FORMAT,
                 log_file: Optional[str] = None,
                 console_output: bool = True,
                 propagate: bool = False):
        """
        Initializes and configures a specific logger instance.

        Args:
            logger_name (str): The name for the logger to be configured.
            log_level (Union[int, str, None], optional): The logging level. When omitted,
                DEBUG is used if the DEBUG environment variable is "true", INFO otherwise.
            log_format (str, optional): The format string for log messages.
            log_file (Optional[str], optional): Path to a file for log output.
            console_output (bool, optional): Whether to output logs to the console.
            propagate (bool, optional): Whether messages from the configured logger
                                     should be passed to ancestor loggers.
        """
        self.logger_name = logger_name
        self.log_level = log_level if log_level is not None else self.level_from_env()
        self.log_format_str = log_format
        self.log_file = log_file
        self.console_output = console_output
        self.propagate = propagate

        self._configured_logger = logging.getLogger(self.logger_name)
        self._configured_logger.setLevel(self.log_level)
        self._configured_logger.propagate = self.propagate

        # Reconfiguring the same logger name must not duplicate output.
        if self._configured_logger.hasHandlers():
            self._configured_logger.handlers.clear()

        self._formatter = logging.Formatter(self.log_format_str)
        self._configure_handlers()

    @staticmethod
    def level_from_env() -> int:
        """DEBUG when the DEBUG environment variable is "true", INFO otherwise."""
        if os.getenv("DEBUG", "").strip().lower() == "true":
            return logging.DEBUG
        return LoggingManager.DEFAULT_LOG_LEVEL

    @staticmethod
    def timestamped_log_path(log_dir: str, prefix: str) -> str:
        """Creates log_dir if needed and returns '<log_dir>/<prefix>_<YYYYmmdd_HHMMSS>.log'."""
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        return os.path.join(log_dir, f'{prefix}_{timestamp}.log')

    def _configure_handlers(self) -> None:
        if self.console_output:
            console_handler = logging.StreamHandler(stream=sys.stdout)
            console_handler.setFormatter(self._formatter)
            self._configured_logger.addHandler(console_handler)

        if self.log_file:
            try:
                file_handler = logging.FileHandler(self.log_file, mode='a')
                file_handler.setFormatter(self._formatter)
                self._configured_logger.addHandler(file_handler)
                self._configured_logger.debug(f"Logging to file: {self.log_file}")
            except OSError as e:
                print(f"Warning: Logger '{self.logger_name}': Could not set up logging to file {self.log_file}: {e}", file=sys.stderr)

    def get_configured_logger(self) -> logging.Logger:
        """
        Returns the logger instance that this LoggingManager instance configured.
        """
        return self._configured_logger

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """
        Retrieves a logger instance by its name.

        Child loggers such as 'stalebranches.scanner' propagate to the
        'stalebranches' logger configured by the CLI.

        Args:
            name (str): The name of the logger to retrieve.

        Returns:
            logging.Logger: The logger instance.
        """
        return logging.getLogger(name)

    @staticmethod
    def success(logger: logging.Logger, message: str, *args) -> None:
        """Logs message at the SUCCESS level."""
        logger.log(SUCCESS, message, *args)
