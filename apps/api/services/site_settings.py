"""
Site settings (key/value configuration store).

Operator-tunable thresholds are stored as strings in the site_setting table.
Services never read them directly: a route resolves an OfflinePolicy once per
request and passes it down, so tests can inject fixed values.

Reads fall back to the Settings defaults when a key is missing or unparseable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from core.cache import key_for, read_json, write_json
from core.config import settings
from models import SiteSetting

logger = logging.getLogger(__name__)


ADHERENCE_THRESHOLD_KEY = "offline_new_coach_adherence_threshold"
ONLINE_THRESHOLD_KEY = "offline_new_coach_online_threshold"
OFFLINE_MAX_PERCENT_KEY = "offline_max_percent"
REPORT_DEADLINE_HOURS_KEY = "offline_report_deadline_hours"

OFFLINE_POLICY_KEYS = (
    ADHERENCE_THRESHOLD_KEY,
    ONLINE_THRESHOLD_KEY,
    OFFLINE_MAX_PERCENT_KEY,
    REPORT_DEADLINE_HOURS_KEY,
)


@dataclass(frozen=True)
class OfflinePolicy:
    """Thresholds governing offline conversion, resolved once per request."""
    adherence_threshold: int = 70      # percent; compared against 0-1 scores as threshold / 100
    online_threshold: int = 3          # qualifying online sessions needed for auto-approval
    offline_max_percent: int = 25      # share of an enrollment's sessions that may be offline
    report_deadline_hours: int = 4     # hours after scheduled start to submit the offline report

    @property
    def adherence_threshold_ratio(self) -> float:
        return self.adherence_threshold / 100.0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def get_settings_map(db: Session, keys: Iterable[str]) -> Dict[str, Optional[str]]:
    """Fetch raw string values for keys (missing keys are absent from the result)."""
    keys = list(keys)
    rows = db.query(SiteSetting).filter(SiteSetting.key.in_(keys)).all()
    return {row.key: row.value for row in rows}


def get_setting(db: Session, key: str) -> Optional[str]:
    row = db.get(SiteSetting, key)
    return row.value if row else None


def _parse_int(raw: Optional[str], default: int, key: str) -> int:
    if raw is None or str(raw).strip() == "":
        return default
    try:
        # Settings editors sometimes store "70.0" or JSON-quoted numbers.
        return int(float(str(raw).strip().strip('"')))
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer for site setting {key!r}: {raw!r}; using default {default}")
        return default


def load_offline_policy(db: Session, use_cache: bool = True) -> OfflinePolicy:
    """
    Resolve the offline conversion policy from site settings.

    Cached briefly in Redis (when available) since every offline request and
    admin review reads the same four keys.
    """
    key = key_for("site_settings", "offline_policy")
    if use_cache:
        cached = read_json(key)
        if cached:
            try:
                return OfflinePolicy(**cached)
            except TypeError:
                logger.warning("Discarding malformed cached offline policy")

    raw = get_settings_map(db, OFFLINE_POLICY_KEYS)
    policy = OfflinePolicy(
        adherence_threshold=_parse_int(
            raw.get(ADHERENCE_THRESHOLD_KEY), settings.OFFLINE_NEW_COACH_ADHERENCE_THRESHOLD, ADHERENCE_THRESHOLD_KEY
        ),
        online_threshold=_parse_int(
            raw.get(ONLINE_THRESHOLD_KEY), settings.OFFLINE_NEW_COACH_ONLINE_THRESHOLD, ONLINE_THRESHOLD_KEY
        ),
        offline_max_percent=_parse_int(
            raw.get(OFFLINE_MAX_PERCENT_KEY), settings.OFFLINE_MAX_PERCENT, OFFLINE_MAX_PERCENT_KEY
        ),
        report_deadline_hours=_parse_int(
            raw.get(REPORT_DEADLINE_HOURS_KEY), settings.OFFLINE_REPORT_DEADLINE_HOURS, REPORT_DEADLINE_HOURS_KEY
        ),
    )

    if use_cache:
        write_json(key, policy.to_dict(), ttl=settings.CACHE_TTL_SETTINGS)
    return policy
