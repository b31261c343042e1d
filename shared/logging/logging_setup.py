from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os


debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.INFO if not debug_mode else logging.DEBUG

_LEVEL_PREFIX = {logging.WARNING: "⚠️ ", logging.ERROR: "⛔ ", logging.CRITICAL: "⛔ "}
_LEVEL_COLOR = {logging.DEBUG: "\033[36m", logging.WARNING: "\033[33m", logging.ERROR: "\033[31m", logging.CRITICAL: "\033[35m"}
_ANSI_RESET = "\033[0m"


class CustomFormatter(logging.Formatter):
    """Timestamps in the configured TIMEZONE, warnings and errors marked with a prefix."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        # every handler formats the same record, so prefix a copy
        record = logging.makeLogRecord(record.__dict__)
        record.msg = _LEVEL_PREFIX.get(record.levelno, "") + record.getMessage()
        # args are already merged into msg
        record.args = ()
        return super().format(record)


class LevelColorFormatter(CustomFormatter):
    """Console variant; the file handler stays plain."""

    def format(self, record) -> str:
        line = super().format(record)
        color = _LEVEL_COLOR.get(record.levelno)
        return f"{color}{line}{_ANSI_RESET}" if color else line


def setup_logging(component: str = "api") -> logging.Logger:
    """Configure console and file logging for one entrypoint.

    Args:
        component (str): Entrypoint name, e.g. "api" or "knowledge_sync". Used as
            logger name suffix and as log file name below LOG_DIR (default <ROOT_DIR>/logs).

    Returns:
        logging.Logger: The logger "rag_chat.<component>".
    """
    root_dir = os.getenv("ROOT_DIR") or os.getcwd()
    log_dir = os.getenv("LOG_DIR") or os.path.join(root_dir, "logs")
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")
    os.makedirs(log_dir, exist_ok=True)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": CustomFormatter,
                "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
            "console": {
                "()": LevelColorFormatter,
                "format": "%(asctime)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.FileHandler",
                "formatter": "standard",
                "level": loglevel,
                "filename": os.path.join(log_dir, f"{component}.log"),
                "encoding": "utf-8",
            },
        },
        "root": {
            "handlers": ["console", "file"],
            "level": loglevel,
        },
    }

    logging.config.dictConfig(logging_config)

    # per-request chatter of the libraries only in debug mode
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug_mode else logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return logging.getLogger(f"rag_chat.{component}")
