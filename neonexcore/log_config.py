"""Environment-driven configuration of the global logger."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from neonexcore import logger
from neonexcore.logger import JSONFormatter, LogLevel, TextFormatter
from neonexcore.writer import FileWriter, FileWriterConfig


@dataclass
class LogConfig:
    """How the global logger should level, format and route its output."""

    level: str = "info"
    format: str = "text"
    output: str = "console"
    file_path: str = "logs/app.log"
    max_size: int = 100
    max_backups: int = 7
    max_age: int = 30
    enable_caller: bool = True
    enable_color: bool = True
    rotate_on_date: bool = False
    pretty_print: bool = False


def default_config() -> LogConfig:
    """The configuration used when nothing overrides it."""
    return LogConfig()


_ENV_FIELDS = {
    "LOG_LEVEL": "level",
    "LOG_FORMAT": "format",
    "LOG_OUTPUT": "output",
    "LOG_FILE_PATH": "file_path",
}


def load_config(environ: Mapping[str, str] | None = None) -> LogConfig:
    """Build a configuration from LOG_* variables, falling back to defaults."""
    env = os.environ if environ is None else environ
    config = default_config()
    for variable, attribute in _ENV_FIELDS.items():
        value = env.get(variable, "")
        if value:
            setattr(config, attribute, value)
    return config


_LEVELS = {
    "debug": LogLevel.DEBUG,
    "info": LogLevel.INFO,
    "warn": LogLevel.WARN,
    "warning": LogLevel.WARN,
    "error": LogLevel.ERROR,
    "fatal": LogLevel.FATAL,
}


def parse_level(level: str) -> LogLevel:
    """Map a level name to a LogLevel; unknown names mean INFO."""
    return _LEVELS.get(level, LogLevel.INFO)


def setup(config: LogConfig) -> FileWriter | None:
    """Apply the configuration to the global logger.

    Returns the file writer that was attached, if file output was requested,
    so the caller can close it.
    """
    logger.set_global_level(parse_level(config.level))

    if config.format == "json":
        formatter: JSONFormatter | TextFormatter = JSONFormatter(pretty_print=config.pretty_print)
    else:
        formatter = TextFormatter(disable_colors=not config.enable_color)
    logger.set_global_formatter(formatter)

    logger.enable_global_caller(config.enable_caller)
    logger.enable_global_color(config.enable_color)

    if config.output not in ("file", "both"):
        return None

    file_writer = FileWriter(
        FileWriterConfig(
            filename=config.file_path,
            max_size=config.max_size,
            max_backups=config.max_backups,
            max_age=config.max_age,
            rotate_on_date=config.rotate_on_date,
        )
    )
    if config.output == "file":
        logger.default_logger().set_writers([file_writer])
    else:
        logger.add_global_writer(file_writer)
    return file_writer