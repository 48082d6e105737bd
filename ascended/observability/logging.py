from __future__ import annotations

import logging
import os
import re
from typing import Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Bearer tokens and the two session cookies never reach the log stream.
_CREDENTIAL_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9\-._~+/]+=*"),
    re.compile(r"((?:ascended|admin)\.sid=)[^;,\s]+"),
)


class CredentialScrubFilter(logging.Filter):
    """Replace bearer tokens and session cookie values with ``[REDACTED]``."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = message
        for pattern in _CREDENTIAL_PATTERNS:
            scrubbed = pattern.sub(r"\1[REDACTED]", scrubbed)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


def _resolve_level() -> int:
    level_name = os.getenv("ASCENDED_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; the scrubbing root stream handler is attached once per process."""
    global _HANDLER_ATTACHED

    level = _resolve_level()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handler.addFilter(CredentialScrubFilter())
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(level)
        _HANDLER_ATTACHED = True

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
