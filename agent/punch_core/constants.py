"""
Constants, intervals, timeouts, endpoints, and valid punch sources.
"""

AGENT_VERSION = "1.0.0"

# ─── Intervals ───────────────────────────────────────────────────
REVALIDATE_INTERVAL_SEC = 30    # Background WiFi + location re-probe
CLOCK_TICK_SEC = 1              # Display clock tick
CLOCK_RESYNC_SEC = 120          # Re-anchor the clock on server time every 2 min
LOGS_REFRESH_SEC = 60           # Reconcile today's logs with the server
LOGS_CACHE_TTL_SEC = 120        # Today's logs change after each punch
SUBMIT_DEBOUNCE_SEC = 5         # Minimum gap between two submissions

# ─── Network ─────────────────────────────────────────────────────
API_TIMEOUT_DEFAULT = 30        # Seconds, ordinary JSON calls
API_TIMEOUT_SUBMIT = 60         # Photo upload is much larger than other calls
PUBLIC_IP_TIMEOUT = 5
GEOCODE_TIMEOUT = 5
LOCATION_FIX_TIMEOUT = 8
LOCATION_FIX_ATTEMPTS = 3
LOCATION_FIX_RETRY_DELAY = 1.5
PLATFORM_CMD_TIMEOUT = 5        # nmcli / iwgetid / netsh
SERVER_CONNECT_TIMEOUT = 4      # status: TCP connect to the backend

# Primary first, exactly one fallback.
PUBLIC_IP_SERVICES = (
    "https://api.ipify.org?format=json",
    "https://api64.ipify.org?format=json",
)
IP_GEOLOCATION_URL = "http://ip-api.com/json"
REVERSE_GEOCODE_URL = "https://nominatim.openstreetmap.org/reverse"

# ─── Backend endpoints ───────────────────────────────────────────
DEFAULT_SERVER_URL = "https://hrms-backend-346486007446.asia-south1.run.app"
ATTENDANCE_LOG_PATH = "/attendance/log"
TODAY_LOGS_PATH = "/attendance/today-logs"
SERVER_TIME_PATH = "/common/time/now"

# ─── Submission ──────────────────────────────────────────────────
DEFAULT_SOURCE = "mobile"
VALID_SOURCES = frozenset({"mobile", "web", "biometric", "wifi", "manual"})
PHOTO_FIELD = "photo"
PHOTO_FILENAME = "attendance_photo.jpg"
PHOTO_CONTENT_TYPE = "image/jpeg"

# RFC 4122 versions 1-5, variant bits 8/9/a/b.
UUID_PATTERN = (
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)

LOG_TYPE_CHECK_OUT = "check-out"
