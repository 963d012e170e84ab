"""
Transporter presence: availability status and heartbeats.

A user's :class:`TransporterStatus` is written from three places only: the
user's own status update (or a supervisor override), the lifecycle engine
when a job is assigned/advanced/finished, and the alert scanner when a
heartbeat goes stale.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from dispatch.models import RoleLevel, TransportRequest, TransporterStatus, User, UserHeartbeat
from dispatch.permissions import has_min_role
from dispatch.realtime.fanout import publish_on_commit
from dispatch.services.audit import log_action

logger = logging.getLogger(__name__)

VALID_STATUSES = {value for value, _ in TransporterStatus.STATUS_CHOICES}


def status_payload(ts: TransporterStatus) -> dict:
    user = ts.user
    return {
        'userId': user.id,
        'username': user.username,
        'name': user.get_full_name() or user.username,
        'role': user.role,
        'status': ts.status,
        'explanation': ts.status_explanation,
        'onBreakSince': ts.on_break_since.isoformat() if ts.on_break_since else None,
        'wentOfflineAt': ts.went_offline_at.isoformat() if ts.went_offline_at else None,
        'updatedAt': ts.updated_at.isoformat(),
    }


def active_job_for(user_id: int, *, exclude_id: Optional[int] = None) -> Optional[TransportRequest]:
    qs = TransportRequest.objects.filter(assigned_to_id=user_id, status__in=TransportRequest.ACTIVE_STATUSES)
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    return qs.order_by('assigned_at', 'id').first()


def set_status(user_id: int, status: str, *, now: Optional[datetime] = None, explanation: str = '') -> TransporterStatus:
    """Overwrite a user's status and publish the change after commit."""
    if status not in VALID_STATUSES:
        raise ValidationError({'status': f'Unknown status {status!r}'})
    now = now or timezone.now()
    ts, _ = TransporterStatus.objects.select_related('user').get_or_create(
        user_id=user_id, defaults={'status': status, 'updated_at': now}
    )
    previous = ts.status
    ts.status = status
    ts.status_explanation = explanation or ''
    ts.updated_at = now
    if status == TransporterStatus.STATUS_ON_BREAK:
        if previous != status or ts.on_break_since is None:
            ts.on_break_since = now
    else:
        ts.on_break_since = None
    if status == TransporterStatus.STATUS_OFFLINE:
        if previous != status or ts.went_offline_at is None:
            ts.went_offline_at = now
    else:
        ts.went_offline_at = None
    ts.save()
    publish_on_commit('transporter_status_changed', status_payload(ts))
    return ts


def mirror_active_job(user_id: int, *, now: Optional[datetime] = None, exclude_id: Optional[int] = None) -> TransporterStatus:
    """Set the user's status to their remaining active job's, else ``available``."""
    job = active_job_for(user_id, exclude_id=exclude_id)
    return set_status(user_id, job.status if job else TransporterStatus.STATUS_AVAILABLE, now=now)


@transaction.atomic
def update_own_status(user: User, status: str, explanation: str = '', *, now: Optional[datetime] = None) -> TransporterStatus:
    if status not in TransporterStatus.SELF_SETTABLE:
        raise ValidationError({'status': f'Status must be one of {", ".join(TransporterStatus.SELF_SETTABLE)}'})
    job = active_job_for(user.id)
    if job is not None:
        raise ValidationError({'status': f'Complete or hand off request #{job.pk} before changing status'})
    return set_status(user.id, status, now=now, explanation=explanation)


@transaction.atomic
def override_status(actor: User, user_id: int, status: str, explanation: str = '', *, now: Optional[datetime] = None) -> TransporterStatus:
    if not has_min_role(actor, RoleLevel.supervisor):
        raise PermissionDenied('Only supervisors can override another user\'s status')
    if status not in TransporterStatus.SELF_SETTABLE:
        raise ValidationError({'status': f'Status must be one of {", ".join(TransporterStatus.SELF_SETTABLE)}'})
    target = User.objects.filter(pk=user_id).first()
    if target is None:
        raise NotFound('User not found')
    previous = TransporterStatus.objects.filter(user_id=user_id).values_list('status', flat=True).first()
    ts = set_status(user_id, status, now=now, explanation=explanation)
    log_action(user=actor, action='status_override', object_type='user', object_id=user_id,
               detail={'from': previous, 'to': status, 'explanation': explanation})
    return ts


def record_heartbeat(user: User, *, channel_name: str = '', now: Optional[datetime] = None) -> UserHeartbeat:
    now = now or timezone.now()
    defaults = {'last_heartbeat': now}
    if channel_name:
        defaults['channel_name'] = channel_name
    hb, _ = UserHeartbeat.objects.update_or_create(user=user, defaults=defaults)
    return hb


def list_statuses() -> list[dict]:
    """Every active user's status with their current job, if any."""
    statuses = (TransporterStatus.objects.select_related('user')
                .filter(user__is_active=True).order_by('user__username'))
    jobs = {
        r.assigned_to_id: r
        for r in TransportRequest.objects.filter(status__in=TransportRequest.ACTIVE_STATUSES).order_by('-assigned_at')
    }
    data = []
    for ts in statuses:
        entry = status_payload(ts)
        job = jobs.get(ts.user_id)
        entry['currentJob'] = {
            'id': job.pk, 'status': job.status, 'originFloor': job.origin_floor,
            'roomNumber': job.room_number, 'priority': job.priority,
        } if job else None
        data.append(entry)
    return data
