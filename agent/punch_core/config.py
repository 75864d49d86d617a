"""
Paths, logging setup, config load/save, safe_print.
"""

import os
import json
import sys
import logging
from pathlib import Path

from .constants import DEFAULT_SERVER_URL, DEFAULT_SOURCE, REVALIDATE_INTERVAL_SEC


# ─── Paths ───────────────────────────────────────────────────────
# One config/log per user. PUNCH_AGENT_HOME overrides for tests and kiosks.

def agent_home():
    home = os.environ.get("PUNCH_AGENT_HOME")
    if home:
        return Path(home)
    return Path.home() / ".punch-agent"


def config_file():
    return agent_home() / "config.json"


def log_file():
    return agent_home() / "punch.log"


DEFAULTS = {
    "serverUrl": DEFAULT_SERVER_URL,
    "organizationId": "",
    "userId": "",
    "accessToken": "",
    "source": DEFAULT_SOURCE,
    "locationConsent": True,
    "revalidateIntervalSec": REVALIDATE_INTERVAL_SEC,
}


# ─── Safe print (no crash when there is no console) ──────────────

def safe_print(*args, **kwargs):
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────

log = logging.getLogger("punch")

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level=logging.INFO, console=True):
    """Attach the file (and console) handlers. Safe to call more than once."""
    if getattr(log, "_punch_configured", False):
        return log

    path = log_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        if path.exists() and path.stat().st_size > 1_000_000:
            path.write_text("")
    except OSError:
        pass

    file_handler = logging.FileHandler(str(path), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    log.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(_FORMAT))
        log.addHandler(console_handler)

    log.setLevel(level)
    log._punch_configured = True
    return log


# ─── Config Management ──────────────────────────────────────────

def load_config():
    """Load config from disk merged over DEFAULTS. Returns dict or None."""
    path = config_file()
    if path.exists():
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            return None
        return {**DEFAULTS, **data}
    return None


def save_config(config):
    """Save config dict to disk."""
    path = config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(config, f, indent=2)
    log.info("Config saved to %s", path)
