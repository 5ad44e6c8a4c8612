"""Root logger setup driven by ``config.logging``.

Modules never configure logging themselves; they call
``logging.getLogger(__name__)`` and leave handler wiring to the process entry
points (``cli`` and ``api.server.start_server``), which call
:func:`configure_logging` once.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
}


class JsonLogFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, sort_keys=True)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Install a single stream handler on the root logger.

    Args:
        level: Level name override; defaults to ``config.logging.level``.
        fmt: ``simple``, ``detailed`` or ``json``; defaults to
            ``config.logging.format``.
    """
    from economy_ledger.config import config

    level_name = (level or config.logging.level).upper()
    style = fmt or config.logging.format

    handler = logging.StreamHandler()
    if style == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(_FORMATS.get(style, _FORMATS["detailed"])))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))
