"""
Runtime configuration stored in :class:`dispatch.models.SystemConfig`.

Values are JSON documents keyed by name and cached in the Django cache for
``DISPATCH_CONFIG_CACHE_SECONDS``.  Typed getters merge stored values over
defaults so callers always see a complete structure.
"""
from __future__ import annotations

import copy
from typing import Any

from django.conf import settings
from django.core.cache import cache

from dispatch.models import SystemConfig

_CACHE_PREFIX = 'sysconfig:'

ALERT_KINDS = (
    'pending_timeout',
    'stat_timeout',
    'acceptance_timeout',
    'break_alert',
    'offline_alert',
    'cycle_time_alert',
)

DEFAULT_ALERT_SETTINGS: dict[str, Any] = {
    'master_enabled': True,
    'alerts': {kind: True for kind in ALERT_KINDS},
    'require_explanation_on_dismiss': True,
}

CYCLE_TIME_MODES = ('manual_threshold', 'rolling_average')
CLAIM_TARGETS = ('assigned', 'accepted')


def _cache_key(key: str) -> str:
    return f'{_CACHE_PREFIX}{key}'


def get_value(key: str, default: Any = None) -> Any:
    # cached as (found, value) so that absent keys are cached too
    entry = cache.get(_cache_key(key))
    if entry is None:
        row = SystemConfig.objects.filter(key=key).first()
        entry = (row is not None, row.value if row is not None else None)
        cache.set(_cache_key(key), entry, settings.DISPATCH_CONFIG_CACHE_SECONDS)
    found, value = entry
    if not found or value is None:
        return default
    return value


def set_value(key: str, value: Any) -> SystemConfig:
    obj, _ = SystemConfig.objects.update_or_create(key=key, defaults={'value': value})
    cache.delete(_cache_key(key))
    return obj


def delete_value(key: str) -> bool:
    deleted, _ = SystemConfig.objects.filter(key=key).delete()
    cache.delete(_cache_key(key))
    return deleted > 0


def all_values() -> dict[str, Any]:
    return {c.key: c.value for c in SystemConfig.objects.order_by('key')}


def clear_cache() -> None:
    for key in SystemConfig.objects.values_list('key', flat=True):
        cache.delete(_cache_key(key))


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {'1', 'true', 'yes', 'on'}
    return bool(value)


# ---------------------------------------------------------------------
# Typed getters
# ---------------------------------------------------------------------
def get_alert_settings() -> dict[str, Any]:
    """Stored ``alert_settings`` merged over the defaults."""
    merged = copy.deepcopy(DEFAULT_ALERT_SETTINGS)
    merged['timing'] = dict(settings.DISPATCH_DEFAULT_ALERT_TIMING)
    stored = get_value('alert_settings')
    if isinstance(stored, dict):
        for k, v in stored.items():
            if k in ('alerts', 'timing'):
                if isinstance(v, dict):
                    merged[k].update(v)
            else:
                merged[k] = v
    return merged


def alert_enabled(kind: str, alert_settings: dict[str, Any] | None = None) -> bool:
    alert_settings = alert_settings or get_alert_settings()
    if not alert_settings.get('master_enabled', True):
        return False
    return bool(alert_settings['alerts'].get(kind, True))


def get_alert_timing() -> dict[str, int]:
    """Alert thresholds in minutes."""
    defaults = settings.DISPATCH_DEFAULT_ALERT_TIMING
    timing = get_alert_settings()['timing']
    resolved = {k: _as_int(timing.get(k), v) for k, v in defaults.items()}
    # Standalone keys kept for older clients.
    if get_value('break_alert_minutes') is not None:
        resolved['break_alert_minutes'] = _as_int(get_value('break_alert_minutes'), resolved['break_alert_minutes'])
    heartbeat_ms = get_value('heartbeat_timeout_ms')
    if heartbeat_ms is not None:
        resolved['offline_alert_minutes'] = max(1, _as_int(heartbeat_ms, 120000) // 60000)
    return resolved


def get_cycle_time_mode() -> str:
    mode = get_value('cycle_time_alert_mode', 'manual_threshold')
    return mode if mode in CYCLE_TIME_MODES else 'manual_threshold'


def get_phase_thresholds() -> dict[str, dict[str, Any]]:
    """Per-phase ``{'enabled': bool, 'minutes': int}`` for manual mode."""
    stored = get_value('cycle_time_phase_thresholds') or {}
    result = {}
    for phase, minutes in settings.DISPATCH_DEFAULT_PHASE_THRESHOLDS.items():
        entry = stored.get(phase) if isinstance(stored, dict) else None
        if isinstance(entry, dict):
            result[phase] = {
                'enabled': _as_bool(entry.get('enabled'), True),
                'minutes': _as_int(entry.get('minutes'), minutes),
            }
        elif entry is not None:
            result[phase] = {'enabled': True, 'minutes': _as_int(entry, minutes)}
        else:
            result[phase] = {'enabled': True, 'minutes': minutes}
    return result


def get_cycle_time_sample_size() -> int:
    return max(1, _as_int(get_value('cycle_time_sample_size'), 50))


def get_cycle_time_threshold_percentage() -> int:
    return _as_int(get_value('cycle_time_threshold_percentage'), 30)


def auto_assign_enabled() -> bool:
    return _as_bool(get_value('auto_assign_enabled'), True)


def auto_assign_floor_affinity() -> bool:
    return _as_bool(get_value('auto_assign_floor_affinity'), False)


def get_claim_target_status() -> str:
    target = get_value('claim_target_status', 'assigned')
    return target if target in CLAIM_TARGETS else 'assigned'


def auto_assign_acceptance_timeout_seconds() -> int:
    """How long an auto-assigned transporter has to accept before the job is re-paired."""
    return max(1, _as_int(get_value('auto_assign_acceptance_timeout_ms'), 120000) // 1000)
