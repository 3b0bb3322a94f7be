"""Runtime settings, read from the environment at import time."""

from __future__ import annotations

import os

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPTIMIZER_MODEL = os.getenv("OPTIMIZER_MODEL", "gpt-4o-mini")
OPTIMIZER_TIMEOUT_SECONDS = float(os.getenv("OPTIMIZER_TIMEOUT_SECONDS", "30"))

# Defaults for the resolution options offered on each conflict.
DEFAULT_SHIFT_MINUTES = int(os.getenv("DEFAULT_SHIFT_MINUTES", "30"))
DEFAULT_SHORTEN_FACTOR = float(os.getenv("DEFAULT_SHORTEN_FACTOR", "0.8"))

# Upper bound on shift-and-recheck rounds when auto-resolving a day.
AUTO_RESOLVE_MAX_PASSES = int(os.getenv("AUTO_RESOLVE_MAX_PASSES", "50"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
