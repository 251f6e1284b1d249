import logging
import sys

# Indexed by the --verbosity flag, from 0 (verbose) to 3 (silent).
LOG_LEVELS = [logging.DEBUG, logging.INFO, logging.ERROR, logging.CRITICAL]

_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    """Formatter that appends the ``extra`` fields of a record as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def setup_logging(verbosity: int = 1) -> None:
    """Send log lines to stderr, hiding the ones below the verbosity level."""
    root_logger = logging.getLogger()
    root_logger.setLevel(LOG_LEVELS[verbosity])

    # Remove existing handlers to avoid duplication
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(KeyValueFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root_logger.addHandler(handler)
