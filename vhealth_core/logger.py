import logging, json, sys, time, os


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts (UTC), level, name, msg, and exc when present."""

    converter = time.gmtime

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%SZ")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def get_logger(name="vhealth", level=None, to_file=None):
    """
    Structured logger shared by the protection components.

    Level comes from ``VHEALTH_LOG_LEVEL`` (default INFO); ``VHEALTH_LOG_FILE``
    adds a file handler. Handlers are attached once per logger name.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level or os.getenv("VHEALTH_LOG_LEVEL", "INFO").upper())
    if logger.handlers:
        return logger

    formatter = JsonFormatter()
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    to_file = to_file or os.getenv("VHEALTH_LOG_FILE")
    if to_file:
        os.makedirs(os.path.dirname(to_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(to_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
