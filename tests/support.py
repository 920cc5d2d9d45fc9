"""Constants shared by unit and integration tests."""

from datetime import datetime, timezone

# 15:00 in Sao Paulo (UTC-3)
START_TIME = datetime(2026, 10, 1, 18, 0, tzinfo=timezone.utc)
