from __future__ import annotations

import os
from datetime import timedelta
from zoneinfo import ZoneInfo

# ---------------------------
# Config
# ---------------------------
# Calendar days and clock labels are rendered in this zone.
TRACKING_TZ = ZoneInfo(os.getenv("TRACKING_TZ", "UTC"))

LOCATION_REFRESH_S = float(os.getenv("LOCATION_REFRESH_S", "20"))
STATUS_TICK_S = float(os.getenv("STATUS_TICK_S", "60"))
ONLINE_THRESHOLD = timedelta(seconds=float(os.getenv("ONLINE_THRESHOLD_S", "300")))

# Device side
REPORT_INTERVAL_S = float(os.getenv("REPORT_INTERVAL_S", "30"))
GPSD_HOST = os.getenv("GPSD_HOST", "127.0.0.1")
GPSD_PORT = int(os.getenv("GPSD_PORT", "2947"))
GPSD_READ_TIMEOUT_S = float(os.getenv("GPSD_READ_TIMEOUT_S", "10"))
GPSD_RECONNECT_S = float(os.getenv("GPSD_RECONNECT_S", "5"))
