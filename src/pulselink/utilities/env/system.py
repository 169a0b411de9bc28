import logging
from pathlib import Path

from pulselink.utilities.env.parsing import _env_flag, _env_str

DEFAULT_LOG_DIRECTORY = Path("~/.pulselink/logs")


class SystemConfiguration:
    @classmethod
    def is_debug_mode(cls) -> bool:
        return _env_flag("DEBUG_MODE")

    @classmethod
    def log_level(cls) -> int:
        """Return the numeric level from ``LOG_LEVEL``.

        Without an explicit level, ``DEBUG_MODE`` selects DEBUG and everything
        else logs at INFO.
        """

        default = "DEBUG" if cls.is_debug_mode() else "INFO"
        name = _env_str("LOG_LEVEL", default=default).upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ValueError(f"LOG_LEVEL must be a logging level name, got {name!r}")
        return level

    @classmethod
    def log_directory(cls) -> Path:
        raw = _env_str("PULSELINK_LOG_DIR", default=str(DEFAULT_LOG_DIRECTORY))
        return Path(raw).expanduser()

    @classmethod
    def file_logging_enabled(cls) -> bool:
        return _env_flag("PULSELINK_LOG_TO_FILE", default=True)
