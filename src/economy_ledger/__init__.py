"""Economy Ledger: event-sourced integrity layer for a card-collecting economy.

Every change to a player's credits, cards, codex unlocks, trades, listings and
trivia attempts is recorded as an immutable event alongside the materialized
aggregate rows. Operators can replay that history to verify state, roll a
player back to an earlier instant, stamp baseline history, and wipe economic
state behind a confirmation word.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``;
``api/server.py`` and the health route import ``__version__`` from here.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version, read from pyproject.toml via importlib.metadata.
#
# When the package is imported without being installed (for example straight
# from a source checkout) we fall back to the current release string so the
# application can still start.
# ---------------------------------------------------------------------------
try:
    __version__: str = version("economy-ledger")
except PackageNotFoundError:
    __version__ = "0.3.0"
