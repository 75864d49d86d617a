"""
Attendance Punch Agent
======================
Checks in / out against the HR server with a photo, the current WiFi
network, and the device location. Keeps WiFi/location validation and
today's attendance fresh in the background while `watch` runs.

Usage:
    python punch_agent.py configure --org <uuid> --user <uuid> --token <token>
    python punch_agent.py check-in photo.jpg
    python punch_agent.py check-out photo.jpg
    python punch_agent.py status
    python punch_agent.py watch
"""

import sys

from punch_core.runner import main

if __name__ == "__main__":
    sys.exit(main())
