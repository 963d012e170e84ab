"""Shift logging.  Starting a shift makes the user ``available``; ending it makes them ``offline``."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from dispatch.models import DispatcherSession, RoleLevel, ShiftLog, TransporterStatus, User
from dispatch.permissions import has_min_role
from dispatch.realtime.fanout import publish_on_commit
from dispatch.services.audit import log_action
from dispatch.services.transporters import set_status


def shift_data(shift: ShiftLog) -> dict:
    return {
        'id': shift.pk,
        'userId': shift.user_id,
        'username': shift.user.username,
        'shiftStart': shift.shift_start.isoformat(),
        'shiftEnd': shift.shift_end.isoformat() if shift.shift_end else None,
        'extension': shift.extension,
        'floorAssignment': shift.floor_assignment,
    }


def current_shift(user_id: int) -> Optional[ShiftLog]:
    return (ShiftLog.objects.select_related('user')
            .filter(user_id=user_id, shift_end__isnull=True)
            .order_by('-shift_start').first())


@transaction.atomic
def start_shift(user: User, *, extension: str = '', floor_assignment: Optional[str] = None,
                now: Optional[datetime] = None) -> ShiftLog:
    now = now or timezone.now()
    if current_shift(user.id) is not None:
        raise ValidationError({'detail': 'You already have an active shift'})
    shift = ShiftLog.objects.create(
        user=user, shift_start=now, extension=extension or '', floor_assignment=floor_assignment or None,
    )
    set_status(user.id, TransporterStatus.STATUS_AVAILABLE, now=now)
    log_action(user=user, action='shift_start', object_type='shift', object_id=shift.pk,
               detail={'extension': extension, 'floor': floor_assignment})
    publish_on_commit('shift_started', shift_data(shift))
    return shift


def _close(shift: ShiftLog, actor: User, now: datetime) -> ShiftLog:
    # conditional on the shift still being open
    rows = ShiftLog.objects.filter(pk=shift.pk, shift_end__isnull=True).update(shift_end=now)
    if rows == 0:
        raise ValidationError({'detail': 'Shift already ended'})
    shift.refresh_from_db()
    set_status(shift.user_id, TransporterStatus.STATUS_OFFLINE, now=now)
    detail = {'shiftStart': shift.shift_start.isoformat(), 'shiftEnd': now.isoformat()}
    if actor.id != shift.user_id:
        detail['endedBy'] = actor.id
    log_action(user=actor, action='shift_end', object_type='shift', object_id=shift.pk, detail=detail)
    publish_on_commit('shift_ended', shift_data(shift))
    return shift


@transaction.atomic
def end_shift(user: User, *, now: Optional[datetime] = None) -> ShiftLog:
    shift = current_shift(user.id)
    if shift is None:
        raise ValidationError({'detail': 'No active shift found'})
    return _close(shift, user, now or timezone.now())


@transaction.atomic
def force_end_shift(actor: User, user_id: int, *, now: Optional[datetime] = None) -> ShiftLog:
    """End another user's shift.  Dispatchers must be the active primary."""
    if not has_min_role(actor, RoleLevel.supervisor):
        is_primary = DispatcherSession.objects.filter(
            user=actor, is_primary=True, ended_at__isnull=True
        ).exists()
        if not (has_min_role(actor, RoleLevel.dispatcher) and is_primary):
            raise PermissionDenied('Only the primary dispatcher or a supervisor can end shifts')
    if not User.objects.filter(pk=user_id).exists():
        raise NotFound('User not found')
    shift = current_shift(user_id)
    if shift is None:
        raise ValidationError({'detail': 'No active shift found for this user'})
    return _close(shift, actor, now or timezone.now())


@transaction.atomic
def update_extension(user: User, extension: str) -> ShiftLog:
    extension = (extension or '').strip()
    if not extension:
        raise ValidationError({'extension': 'Extension is required'})
    shift = current_shift(user.id)
    if shift is None:
        raise ValidationError({'detail': 'No active shift found'})
    shift.extension = extension
    shift.save(update_fields=['extension'])
    publish_on_commit('extension_updated', {'userId': user.id, 'extension': extension})
    return shift


def shift_history(*, user_id: Optional[int] = None, start=None, end=None, limit: int = 200) -> list[dict]:
    qs = ShiftLog.objects.select_related('user').order_by('-shift_start')
    if user_id:
        qs = qs.filter(user_id=user_id)
    if start:
        qs = qs.filter(shift_start__gte=start)
    if end:
        qs = qs.filter(shift_start__lte=end)
    return [shift_data(s) for s in qs[:limit]]
