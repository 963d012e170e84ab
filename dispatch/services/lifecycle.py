"""
Lifecycle engine for transport requests.

This is the only module that writes ``TransportRequest.status``, the
milestone timestamps and :class:`StatusHistory`.  Every status change is
a conditional ``UPDATE`` keyed on the status read for validation, so two
writers racing on the same request cannot both win: the loser sees zero
rows updated and gets :class:`~dispatch.exceptions.Conflict`.

The state machine::

    pending -> assigned -> accepted -> en_route -> with_patient -> complete
    any non-terminal -> cancelled

plus the system-only release of an unaccepted auto-assignment
(``assigned -> pending``, see :func:`release_auto_assignment`).

``actor=None`` denotes the system (background services) and passes every
authorization check.  Events are published only after the transaction
commits.
"""
from __future__ import annotations

import html
import logging
from datetime import datetime
from typing import Any, Optional

import bleach
from django.core.cache import cache
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from dispatch.exceptions import Conflict, InvalidTransition, TransporterUnavailable
from dispatch.models import (
    RoleLevel,
    StatusHistory,
    TransportRequest,
    TransporterStatus,
    User,
    validate_room_for_floor,
)
from dispatch.permissions import has_min_role
from dispatch.realtime.fanout import publish_on_commit
from dispatch.serializers.requests import request_data
from dispatch.services import config
from dispatch.services.audit import log_action
from dispatch.services.transporters import mirror_active_job, set_status

logger = logging.getLogger(__name__)

R = TransportRequest

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    R.STATUS_PENDING: frozenset({R.STATUS_ASSIGNED, R.STATUS_CANCELLED}),
    R.STATUS_ASSIGNED: frozenset({R.STATUS_ACCEPTED, R.STATUS_CANCELLED}),
    R.STATUS_ACCEPTED: frozenset({R.STATUS_EN_ROUTE, R.STATUS_CANCELLED}),
    R.STATUS_EN_ROUTE: frozenset({R.STATUS_WITH_PATIENT, R.STATUS_CANCELLED}),
    R.STATUS_WITH_PATIENT: frozenset({R.STATUS_COMPLETE, R.STATUS_CANCELLED}),
    R.STATUS_COMPLETE: frozenset(),
    R.STATUS_CANCELLED: frozenset(),
}

# Cycle-time phase that runs while a request sits in each status.
PHASE_FOR_STATUS = {
    R.STATUS_ASSIGNED: 'acceptance',
    R.STATUS_ACCEPTED: 'pickup',
    R.STATUS_EN_ROUTE: 'en_route',
    R.STATUS_WITH_PATIENT: 'transport',
}

_EVENT_FOR_TARGET = {
    R.STATUS_ASSIGNED: 'request_assigned',
    R.STATUS_CANCELLED: 'request_cancelled',
}


def can_transition(current: str, target: str) -> bool:
    """Return True if a request may move from ``current`` to ``target``."""
    return target in ALLOWED_TRANSITIONS.get(current, ())


def _load(request_id: int) -> TransportRequest:
    req = TransportRequest.objects.filter(pk=request_id).first()
    if req is None:
        raise NotFound(f'Transport request {request_id} not found')
    return req


def _is_user(actor) -> bool:
    return isinstance(actor, User)


def _authorize(req: TransportRequest, actor: Optional[User], target: str) -> None:
    if actor is None:
        return
    if has_min_role(actor, RoleLevel.dispatcher):
        return
    if target in (R.STATUS_ASSIGNED, R.STATUS_CANCELLED):
        raise PermissionDenied('Only dispatchers can assign or cancel requests')
    if req.assigned_to_id != actor.id:
        raise PermissionDenied('Only the assigned transporter or a dispatcher can update this request')


def _apply(req: TransportRequest, actor: Optional[User], target: str, now: datetime, *,
           assignee: Optional[User] = None, method: Optional[str] = None) -> TransportRequest:
    """Write one validated transition.  Caller holds the transaction."""
    previous = req.milestone(req.status)
    if previous is not None and now < previous:
        now = previous
    updates: dict[str, Any] = {'status': target, R.MILESTONE_FIELDS[target]: now}
    conditions: dict[str, Any] = {'pk': req.pk, 'status': req.status}
    if target == R.STATUS_ASSIGNED:
        updates['assigned_to'] = assignee
        updates['assignment_method'] = method or 'manual'
        conditions['assigned_to__isnull'] = True

    if TransportRequest.objects.filter(**conditions).update(**updates) == 0:
        raise Conflict('Request was already taken or modified by someone else')

    StatusHistory.objects.create(
        request=req, user=actor if _is_user(actor) else None,
        from_status=req.status, to_status=target, timestamp=now,
    )
    from_status = req.status
    req.refresh_from_db()

    if req.assigned_to_id:
        if target in R.ACTIVE_STATUSES:
            set_status(req.assigned_to_id, target, now=now)
        else:
            mirror_active_job(req.assigned_to_id, now=now, exclude_id=req.pk)

    payload = request_data(req)
    payload['fromStatus'] = from_status
    publish_on_commit(_EVENT_FOR_TARGET.get(target, 'request_status_changed'), payload)
    logger.info('Request %s %s -> %s by %s', req.pk, from_status, target,
                actor.username if _is_user(actor) else 'system')
    return req


def _reserve_transporter(assignee: User, now: datetime) -> None:
    """Flip ``available -> assigned`` or raise; the matcher works from a snapshot."""
    rows = TransporterStatus.objects.filter(
        user_id=assignee.id, status=TransporterStatus.STATUS_AVAILABLE,
    ).update(status=TransporterStatus.STATUS_ASSIGNED, updated_at=now)
    if rows == 0:
        raise TransporterUnavailable(f'{assignee.username} is no longer available')


def transition(request_id: int, actor: Optional[User], target: str, *,
               assignee: Optional[User] = None, method: Optional[str] = None,
               now: Optional[datetime] = None) -> TransportRequest:
    """Move a request to ``target``.

    Raises ``NotFound``, ``InvalidTransition``, ``PermissionDenied`` or
    ``Conflict``; on any error the row is left unchanged.
    """
    now = now or timezone.now()
    with transaction.atomic():
        req = _load(request_id)
        if not can_transition(req.status, target):
            raise InvalidTransition(f'Cannot move request from {req.status} to {target}')
        _authorize(req, actor, target)
        if target == R.STATUS_ASSIGNED:
            if assignee is None:
                raise ValidationError({'assigned_to': 'An assignee is required'})
            if not assignee.is_active:
                raise ValidationError({'assigned_to': 'Assignee is not an active user'})
            if method == 'auto':
                _reserve_transporter(assignee, now)
        return _apply(req, actor, target, now, assignee=assignee, method=method)


def assign(request_id: int, actor: Optional[User], assignee: User, *, method: str = 'manual',
           now: Optional[datetime] = None) -> TransportRequest:
    """``pending -> assigned`` with ``assignee``; used by dispatchers and the matcher."""
    return transition(request_id, actor, R.STATUS_ASSIGNED, assignee=assignee, method=method, now=now)


def release_auto_assignment(request_id: int, *, now: Optional[datetime] = None) -> TransportRequest:
    """Return an unaccepted auto-assignment to the queue (``assigned -> pending``).

    System-only: the matcher calls this when the assignee has not accepted
    within the configured timeout.  The previous assignee's status falls
    back to their remaining job, else ``available``.
    """
    now = now or timezone.now()
    with transaction.atomic():
        req = _load(request_id)
        if req.status != R.STATUS_ASSIGNED or req.assignment_method != 'auto':
            raise InvalidTransition(f'Request {req.pk} is not an unaccepted auto-assignment')
        previous_id = req.assigned_to_id
        rows = TransportRequest.objects.filter(
            pk=req.pk, status=R.STATUS_ASSIGNED, assigned_to_id=previous_id, assignment_method='auto',
        ).update(status=R.STATUS_PENDING, assigned_to=None, assigned_at=None, assignment_method=None)
        if rows == 0:
            raise Conflict('Request was modified by someone else')
        StatusHistory.objects.create(
            request=req, user=None, from_status=R.STATUS_ASSIGNED, to_status=R.STATUS_PENDING, timestamp=now,
        )
        req.refresh_from_db()
        if previous_id:
            mirror_active_job(previous_id, now=now)
        log_action(user=None, action='auto_assign_timeout', object_type='transport_request', object_id=req.pk,
                   detail={'previousAssignee': previous_id})
        payload = request_data(req)
        payload['fromStatus'] = R.STATUS_ASSIGNED
        publish_on_commit('request_status_changed', payload)
    logger.info('Request %s auto-assignment to %s expired', req.pk, previous_id)
    return req


def cancel(request_id: int, actor: Optional[User], *, now: Optional[datetime] = None) -> TransportRequest:
    return transition(request_id, actor, R.STATUS_CANCELLED, now=now)


def claim(request_id: int, actor: User, *, now: Optional[datetime] = None) -> TransportRequest:
    """Self-assign a pending request.

    Exactly one of several concurrent claimers wins; the others get
    ``Conflict``.  With ``claim_target_status = accepted`` the claim also
    accepts the job, writing two history rows.
    """
    now = now or timezone.now()
    target = config.get_claim_target_status()
    with transaction.atomic():
        req = _load(request_id)
        if req.status != R.STATUS_PENDING or req.assigned_to_id is not None:
            if req.is_terminal:
                raise InvalidTransition(f'Request is already {req.status}')
            raise Conflict('Request was already taken')
        busy = TransportRequest.objects.filter(
            assigned_to=actor, status__in=R.ACTIVE_STATUSES
        ).exists()
        if busy:
            raise ValidationError({'detail': 'Finish your current job before claiming another'})
        req = _apply(req, actor, R.STATUS_ASSIGNED, now, assignee=actor, method='claim')
        if target == R.STATUS_ACCEPTED:
            req = _apply(req, actor, R.STATUS_ACCEPTED, now)
    return req


def reassign(request_id: int, actor: User, assignee: User, *, now: Optional[datetime] = None) -> TransportRequest:
    """Hand an ``assigned`` request to another transporter.

    Not a status transition: no history row is written, the change is
    recorded in the audit log instead.
    """
    now = now or timezone.now()
    if not has_min_role(actor, RoleLevel.dispatcher):
        raise PermissionDenied('Only dispatchers can reassign requests')
    if not assignee.is_active:
        raise ValidationError({'assigned_to': 'Assignee is not an active user'})
    with transaction.atomic():
        req = _load(request_id)
        if req.status != R.STATUS_ASSIGNED:
            raise InvalidTransition(f'Only assigned requests can be reassigned (status is {req.status})')
        previous_id = req.assigned_to_id
        if previous_id == assignee.id:
            return req
        rows = TransportRequest.objects.filter(
            pk=req.pk, status=R.STATUS_ASSIGNED, assigned_to_id=previous_id
        ).update(assigned_to=assignee, assignment_method='manual')
        if rows == 0:
            raise Conflict('Request was modified by someone else')
        req.refresh_from_db()
        if previous_id:
            mirror_active_job(previous_id, now=now)
        set_status(assignee.id, R.STATUS_ASSIGNED, now=now)
        log_action(user=actor, action='request_reassign', object_type='transport_request', object_id=req.pk,
                   detail={'from': previous_id, 'to': assignee.id})
        publish_on_commit('request_assigned', request_data(req))
    return req


# ---------------------------------------------------------------------
# Creation and non-status edits
# ---------------------------------------------------------------------
def _clean_special_needs(value) -> list[str]:
    if value in (None, ''):
        return []
    if isinstance(value, str):
        value = [v.strip() for v in value.split(',') if v.strip()]
    unknown = [v for v in value if v not in R.SPECIAL_NEEDS]
    if unknown:
        raise ValidationError({'special_needs': f'Unknown special needs: {", ".join(map(str, unknown))}'})
    # keep first-seen order, drop duplicates
    return list(dict.fromkeys(value))


def _clean_text(value) -> str:
    """Strip markup; the result is plain text, not HTML-escaped."""
    return html.unescape(bleach.clean((value or '').strip(), tags=[], strip=True))


def create_request(actor: Optional[User], data: dict[str, Any], *, now: Optional[datetime] = None) -> TransportRequest:
    """Insert a ``pending`` request, optionally assigning it straight away.

    ``data`` may carry ``assigned_to`` (a :class:`User`) for a manual
    assignment in the same transaction, or ``auto_assign=True`` to ask the
    matcher for a transporter once the request exists.
    """
    if actor is not None and not has_min_role(actor, RoleLevel.dispatcher):
        raise PermissionDenied('Only dispatchers can create requests')
    now = now or timezone.now()
    floor = data.get('origin_floor')
    room = (data.get('room_number') or '').strip()
    try:
        validate_room_for_floor(floor, room)
    except DjangoValidationError as exc:
        raise ValidationError(exc.message_dict) from exc
    priority = data.get('priority') or R.PRIORITY_ROUTINE
    if priority not in dict(R.PRIORITY_CHOICES):
        raise ValidationError({'priority': f'Unknown priority {priority!r}'})

    assignee = data.get('assigned_to')
    with transaction.atomic():
        req = TransportRequest.objects.create(
            origin_floor=floor,
            room_number=room,
            patient_initials=_clean_text(data.get('patient_initials'))[:5],
            destination=_clean_text(data.get('destination')) or 'Atrium',
            priority=priority,
            special_needs=_clean_special_needs(data.get('special_needs')),
            notes=_clean_text(data.get('notes')),
            status=R.STATUS_PENDING,
            created_by=actor if _is_user(actor) else None,
            created_at=now,
        )
        StatusHistory.objects.create(
            request=req, user=actor if _is_user(actor) else None,
            from_status=None, to_status=R.STATUS_PENDING, timestamp=now,
        )
        log_action(user=actor, action='request_create', object_type='transport_request', object_id=req.pk,
                   detail={'floor': floor, 'room': room, 'priority': priority})
        publish_on_commit('request_created', request_data(req))
        if assignee is not None:
            req = transition(req.pk, actor, R.STATUS_ASSIGNED, assignee=assignee, method='manual', now=now)

    if assignee is None and data.get('auto_assign'):
        from dispatch.services.auto_assign import AutoAssignMatcher
        AutoAssignMatcher().match_one(req.pk)
        req.refresh_from_db()
    return req


def delay_ack_key(request_id: int, phase: str) -> str:
    return f'delay_ack:{request_id}:{phase}'


def set_delay_reason(request_id: int, actor: User, reason: str) -> TransportRequest:
    """Record why a request is running late and silence cycle-time alerts for its current phase."""
    reason = _clean_text(reason)
    if not reason:
        raise ValidationError({'delay_reason': 'A delay reason is required'})
    req = _load(request_id)
    if req.is_terminal:
        raise InvalidTransition(f'Request is already {req.status}')
    if not has_min_role(actor, RoleLevel.dispatcher) and req.assigned_to_id != actor.id:
        raise PermissionDenied('Only the assigned transporter or a dispatcher can record a delay')
    with transaction.atomic():
        TransportRequest.objects.filter(pk=req.pk).update(delay_reason=reason)
        req.refresh_from_db()
        log_action(user=actor, action='request_delay', object_type='transport_request', object_id=req.pk,
                   detail={'reason': reason, 'status': req.status})
        publish_on_commit('request_status_changed', request_data(req))
    phase = PHASE_FOR_STATUS.get(req.status)
    if phase:
        cache.set(delay_ack_key(req.pk, phase), True, 24 * 3600)
    return req


def history_for(request_id: int) -> list[dict]:
    return [{
        'fromStatus': h.from_status,
        'toStatus': h.to_status,
        'userId': h.user_id,
        'username': h.user.username if h.user else None,
        'timestamp': h.timestamp.isoformat(),
    } for h in StatusHistory.objects.filter(request_id=request_id).select_related('user')]
