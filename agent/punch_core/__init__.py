"""
punch_core — Attendance Punch Agent v1.0
========================================
Architecture: background daemon threads + one worker per punch attempt.

  constants.py     → Version, intervals, timeouts, endpoints, valid sources
  config.py        → Paths, logging, config load/save, helpers
  http_client.py   → HTTP session with GET-only retry/pooling + CA bundle
  models.py        → WifiInfo, LocationInfo, PunchAttempt, outcomes, ErrorKind
  errors.py        → PunchError, InvalidIdentifierError, CaptureCancelled
  platform_info.py → Network state, SSID sources, public IP, geolocation
  network.py       → NetworkProbe (ordered fallback chains), server reachability
  location.py      → LocationProbe (permission, fix, reverse geocode)
  capture.py       → Photo capture collaborator (FileCapture)
  clock.py         → ClockSync (server-anchored display clock)
  state.py         → AttendanceState (single source of truth)
  api.py           → AttendanceLogClient (submit, today's logs, server time)
  orchestrator.py  → PunchOrchestrator (one attempt, end to end)
  scheduling.py    → BackgroundLoop thread base
  revalidator.py   → PeriodicRevalidator, LogRefresher
  app.py           → PunchApp (wiring, single-submission guard)
  runner.py        → main() + auto-restart wrapper
"""
