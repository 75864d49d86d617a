"""
Entry point, sub-commands, and auto-restart wrapper for `watch`.
"""

import argparse
import json
import sys
import time

from .constants import AGENT_VERSION, DEFAULT_SERVER_URL, DEFAULT_SOURCE
from .config import DEFAULTS, log, safe_print, load_config, save_config, setup_logging
from .app import PunchApp
from .capture import FileCapture
from .models import PunchMode

STATUS_PRINT_SEC = 30


def build_parser():
    parser = argparse.ArgumentParser(
        prog="punch-agent",
        description="Attendance punch agent v" + AGENT_VERSION,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    configure = sub.add_parser("configure", help="write the agent config file")
    configure.add_argument("--server", default=None, help=f"default {DEFAULT_SERVER_URL}")
    configure.add_argument("--org", dest="organization_id", required=True)
    configure.add_argument("--user", dest="user_id", required=True)
    configure.add_argument("--token", dest="access_token", default="")
    configure.add_argument("--source", default=DEFAULT_SOURCE)
    configure.add_argument("--no-location", dest="location_consent", action="store_false")

    sub.add_parser("status", help="probe WiFi/location and show today's attendance")

    for mode in PunchMode:
        punch = sub.add_parser(mode.value, help=f"{mode.label} with a photo")
        punch.add_argument("photo", help="path to a JPEG taken just now")
        punch.add_argument("--timeout", type=float, default=None)

    sub.add_parser("watch", help="keep validation and logs fresh until interrupted")
    return parser


# ─── Commands ────────────────────────────────────────────────────

def cmd_configure(args):
    config = load_config() or dict(DEFAULTS)
    if args.server:
        config["serverUrl"] = args.server.rstrip("/")
    config["organizationId"] = args.organization_id
    config["userId"] = args.user_id
    if args.access_token:
        config["accessToken"] = args.access_token
    config["source"] = args.source
    config["locationConsent"] = args.location_consent
    save_config(config)
    safe_print("Configuration saved.")
    return 0


def cmd_status(config):
    app = PunchApp(config)
    app.refresh()
    safe_print(json.dumps(app.status(), indent=2))
    return 0


def cmd_punch(config, mode, photo, timeout=None):
    mode = PunchMode(mode)
    app = PunchApp(config, capture=FileCapture(photo))
    app.clock.resync()
    if not app.log_refresher.refresh(force=True):
        safe_print("Could not load today's attendance from the server. "
                   "Please check your connection and try again.")
        return 1

    if mode is PunchMode.CHECK_IN and app.state.is_checked_in:
        safe_print("Already checked in today. Check out first.")
        return 1
    if mode is PunchMode.CHECK_OUT and not app.state.is_checked_in:
        safe_print("Not checked in today. Check in first.")
        return 1

    result = app.punch(mode, timeout=timeout)
    if result is None:
        safe_print("A punch is already being submitted. Please wait a moment.")
        return 1
    safe_print(result.message)
    return 0 if result.recorded else 1


def cmd_watch(config):
    app = PunchApp(config)
    app.start()
    safe_print("Punch agent running. Ctrl+C to stop.\n")
    try:
        while True:
            status = app.status(check_server=False)
            log.info(
                "Status | checked_in=%s | wifi=%s (%s) | location=%s | worked=%s",
                status["isCheckedIn"], status["wifiValid"], status["wifiSsid"] or "-",
                status["locationValid"], status["workingHours"],
            )
            time.sleep(STATUS_PRINT_SEC)
    finally:
        app.stop()


def main(argv=None):
    """Primary agent entry point."""
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command == "configure":
        return cmd_configure(args)

    config = load_config()
    if not config or not config.get("organizationId") or not config.get("userId"):
        safe_print("Not configured. Run: punch-agent configure --org <id> --user <id> --token <token>")
        return 1
    log.info("Loaded config for user %s (org %s)",
             config["userId"][:8] + "...", config["organizationId"][:8] + "...")

    if args.command == "status":
        return cmd_status(config)
    if args.command == "watch":
        return run_with_auto_restart(lambda: cmd_watch(config))
    return cmd_punch(config, args.command, args.photo, timeout=args.timeout)


def run_with_auto_restart(target):
    """
    Wrapper that restarts `target` on crash. Never gives up.
    Crash counter resets if it ran for 2+ minutes (not a boot-loop).
    """
    crash_count = 0
    crash_window = 120
    max_rapid_crashes = 10

    while True:
        start_time = time.time()
        try:
            return target()
        except KeyboardInterrupt:
            safe_print("\nAgent stopped by user.")
            return 0
        except Exception as e:
            elapsed = time.time() - start_time
            log.error("Agent crashed after %.0fs: %s", elapsed, e, exc_info=True)

            if elapsed > crash_window:
                crash_count = 0
            crash_count += 1

            if crash_count >= max_rapid_crashes:
                wait = 120
                log.warning("Many rapid crashes (%d). Waiting %ds...", crash_count, wait)
            else:
                wait = min(10 * crash_count, 60)

            log.info("Restarting in %ds (crash %d)...", wait, crash_count)
            time.sleep(wait)


if __name__ == "__main__":
    sys.exit(main())
