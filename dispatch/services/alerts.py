"""
Alert scanner.

A sweep looks for SLA violations and publishes ``alert_triggered`` events:

* ``pending_timeout`` / ``stat_timeout``: a request has waited too long for
  a transporter;
* ``acceptance_timeout``: an assigned request has not been accepted;
* ``cycle_time``: the current phase of an in-progress request is running
  long, against either a manual per-phase threshold or the rolling average
  of recent requests;
* ``break``: a transporter has been on break too long;
* ``offline``: a transporter's heartbeat is stale.  The transporter is also
  marked ``offline``, whether or not the alert itself is enabled.

Repeats are suppressed per ``(kind, entity)`` for a cooldown window.  The
cooldown map lives in memory, so a restart may re-send an alert.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.utils import timezone

from dispatch.models import RoleLevel, TransportRequest, TransporterStatus, UserHeartbeat
from dispatch.realtime.fanout import publish, publish_on_commit
from dispatch.services import config
from dispatch.services.audit import log_action
from dispatch.services.lifecycle import PHASE_FOR_STATUS, delay_ack_key
from dispatch.services.transporters import status_payload

logger = logging.getLogger(__name__)

R = TransportRequest

# Alert kind -> toggle in ``alert_settings['alerts']``.
ALERT_TOGGLES = {
    'pending_timeout': 'pending_timeout',
    'stat_timeout': 'stat_timeout',
    'acceptance_timeout': 'acceptance_timeout',
    'cycle_time': 'cycle_time_alert',
    'break': 'break_alert',
    'offline': 'offline_alert',
}

# Phase -> (start milestone, end milestone).
PHASE_FIELDS = {
    'acceptance': ('assigned_at', 'accepted_at'),
    'pickup': ('accepted_at', 'en_route_at'),
    'en_route': ('en_route_at', 'with_patient_at'),
    'transport': ('with_patient_at', 'completed_at'),
}


def _minutes(delta: timedelta) -> float:
    return round(delta.total_seconds() / 60, 1)


def rolling_average_seconds(phase: str, floor: Optional[str], sample_size: int) -> Optional[float]:
    """Mean duration of the last ``sample_size`` finished instances of ``phase``.

    Uses requests from ``floor`` when there are any, otherwise all floors.
    """
    start_field, end_field = PHASE_FIELDS[phase]
    base = R.objects.filter(**{f'{start_field}__isnull': False, f'{end_field}__isnull': False})
    for qs in (base.filter(origin_floor=floor) if floor else None, base):
        if qs is None:
            continue
        rows = list(qs.order_by(f'-{end_field}').values_list(start_field, end_field)[:sample_size])
        if rows:
            return sum((end - start).total_seconds() for start, end in rows) / len(rows)
    return None


class AlertScanner:
    """Periodic SLA scanner; one instance per scheduler process."""

    def __init__(self, cooldown_seconds: Optional[int] = None):
        if cooldown_seconds is None:
            cooldown_seconds = settings.DISPATCH_ALERT_COOLDOWN_SECONDS
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self._last_sent: dict[tuple[str, int], datetime] = {}

    # -----------------------------------------------------------------
    def sweep(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """Run every check once and return the alerts that were published."""
        now = now or timezone.now()
        alert_settings = config.get_alert_settings()
        timing = config.get_alert_timing()
        sent: list[dict[str, Any]] = []
        sent += self._check_pending(now, alert_settings, timing)
        sent += self._check_acceptance(now, alert_settings, timing)
        sent += self._check_cycle_times(now, alert_settings)
        sent += self._check_breaks(now, alert_settings, timing)
        sent += self._check_heartbeats(now, alert_settings, timing)
        self._prune(now)
        return sent

    def _emit(self, kind: str, entity_id: int, payload: dict[str, Any], now: datetime,
              alert_settings: dict[str, Any], *, dedup_kind: Optional[str] = None) -> Optional[dict[str, Any]]:
        if not config.alert_enabled(ALERT_TOGGLES[kind], alert_settings):
            return None
        key = (dedup_kind or kind, entity_id)
        last = self._last_sent.get(key)
        if last is not None and now - last < self.cooldown:
            return None
        self._last_sent[key] = now
        alert = {'type': kind, **payload, 'triggeredAt': now.isoformat()}
        publish('alert_triggered', alert)
        logger.info('Alert %s for %s', kind, entity_id)
        return alert

    def _prune(self, now: datetime) -> None:
        expired = [k for k, at in self._last_sent.items() if now - at >= self.cooldown]
        for k in expired:
            del self._last_sent[k]

    # -----------------------------------------------------------------
    def _check_pending(self, now, alert_settings, timing) -> list[dict]:
        sent = []
        routine_cutoff = now - timedelta(minutes=timing['pending_timeout_minutes'])
        stat_cutoff = now - timedelta(minutes=timing['stat_timeout_minutes'])
        oldest_cutoff = max(routine_cutoff, stat_cutoff)
        for req in R.objects.filter(status=R.STATUS_PENDING, created_at__lt=oldest_cutoff):
            is_stat = req.priority == R.PRIORITY_STAT
            if req.created_at >= (stat_cutoff if is_stat else routine_cutoff):
                continue
            kind = 'stat_timeout' if is_stat else 'pending_timeout'
            alert = self._emit(kind, req.pk, {
                'requestId': req.pk, 'originFloor': req.origin_floor, 'roomNumber': req.room_number,
                'priority': req.priority, 'waitingMinutes': _minutes(now - req.created_at),
            }, now, alert_settings)
            if alert:
                sent.append(alert)
        return sent

    def _check_acceptance(self, now, alert_settings, timing) -> list[dict]:
        sent = []
        cutoff = now - timedelta(minutes=timing['acceptance_timeout_minutes'])
        for req in R.objects.filter(status=R.STATUS_ASSIGNED, assigned_at__lt=cutoff):
            alert = self._emit('acceptance_timeout', req.pk, {
                'requestId': req.pk, 'transporterId': req.assigned_to_id,
                'originFloor': req.origin_floor, 'roomNumber': req.room_number,
                'waitingMinutes': _minutes(now - req.assigned_at),
            }, now, alert_settings)
            if alert:
                sent.append(alert)
        return sent

    def _check_cycle_times(self, now, alert_settings) -> list[dict]:
        if not config.alert_enabled(ALERT_TOGGLES['cycle_time'], alert_settings):
            return []
        mode = config.get_cycle_time_mode()
        thresholds = config.get_phase_thresholds()
        sample_size = config.get_cycle_time_sample_size()
        percentage = config.get_cycle_time_threshold_percentage()
        averages: dict[tuple[str, str], Optional[float]] = {}

        sent = []
        in_progress = R.objects.filter(status__in=R.ACTIVE_STATUSES, assigned_to__isnull=False)
        for req in in_progress:
            phase = PHASE_FOR_STATUS[req.status]
            if cache.get(delay_ack_key(req.pk, phase)):
                continue
            started = req.milestone()
            if started is None:
                continue
            elapsed = (now - started).total_seconds()
            if mode == 'manual_threshold':
                phase_cfg = thresholds.get(phase)
                if not phase_cfg or not phase_cfg['enabled']:
                    continue
                limit = phase_cfg['minutes'] * 60
                reference, pct = limit, 0
            else:
                key = (phase, req.origin_floor)
                if key not in averages:
                    averages[key] = rolling_average_seconds(phase, req.origin_floor, sample_size)
                if averages[key] is None:
                    continue
                reference, pct = averages[key], percentage
                limit = reference * (1 + percentage / 100)
            if elapsed <= limit:
                continue
            alert = self._emit('cycle_time', req.pk, {
                'requestId': req.pk, 'phase': phase, 'transporterId': req.assigned_to_id,
                'currentSeconds': round(elapsed), 'avgSeconds': round(reference),
                'thresholdPercentage': pct,
            }, now, alert_settings, dedup_kind=f'cycle_time:{phase}')
            if alert:
                sent.append(alert)
        return sent

    def _check_breaks(self, now, alert_settings, timing) -> list[dict]:
        sent = []
        cutoff = now - timedelta(minutes=timing['break_alert_minutes'])
        on_break = (TransporterStatus.objects.select_related('user')
                    .filter(status=TransporterStatus.STATUS_ON_BREAK, on_break_since__lt=cutoff))
        for ts in on_break:
            alert = self._emit('break', ts.user_id, {
                'userId': ts.user_id, 'username': ts.user.username,
                'onBreakSince': ts.on_break_since.isoformat(),
                'breakMinutes': _minutes(now - ts.on_break_since),
            }, now, alert_settings)
            if alert:
                sent.append(alert)
        return sent

    def _check_heartbeats(self, now, alert_settings, timing) -> list[dict]:
        sent = []
        cutoff = now - timedelta(minutes=timing['offline_alert_minutes'])
        stale = (UserHeartbeat.objects.select_related('user')
                 .filter(last_heartbeat__lt=cutoff,
                         user__is_active=True,
                         user__role=RoleLevel.transporter.name,
                         user__transporter_status__isnull=False)
                 .exclude(user__transporter_status__status=TransporterStatus.STATUS_OFFLINE))
        for hb in stale:
            if not self._mark_offline(hb, now):
                continue
            alert = self._emit('offline', hb.user_id, {
                'userId': hb.user_id, 'username': hb.user.username,
                'lastHeartbeat': hb.last_heartbeat.isoformat(),
            }, now, alert_settings)
            if alert:
                sent.append(alert)
        return sent

    def _mark_offline(self, hb: UserHeartbeat, now: datetime) -> bool:
        """Conditionally flip a stale user to ``offline``; False if someone else changed them first."""
        with transaction.atomic():
            ts = TransporterStatus.objects.select_related('user').filter(user_id=hb.user_id).first()
            if ts is None or ts.status == TransporterStatus.STATUS_OFFLINE:
                return False
            # guard against a status change or heartbeat that landed since the query
            still_stale = UserHeartbeat.objects.filter(pk=hb.pk, last_heartbeat=hb.last_heartbeat).exists()
            rows = TransporterStatus.objects.filter(pk=ts.pk, status=ts.status, updated_at=ts.updated_at).update(
                status=TransporterStatus.STATUS_OFFLINE, went_offline_at=now, updated_at=now,
            ) if still_stale else 0
            if rows == 0:
                return False
            previous = ts.status
            ts.refresh_from_db()
            publish_on_commit('transporter_status_changed', status_payload(ts))
            log_action(user=None, action='heartbeat_timeout', object_type='user', object_id=hb.user_id,
                       detail={'from': previous, 'lastHeartbeat': hb.last_heartbeat.isoformat()})
        logger.info('User %s marked offline after heartbeat timeout', hb.user_id)
        return True
