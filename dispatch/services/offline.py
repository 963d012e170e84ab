"""
Replay of actions a transporter's client queued while disconnected.

Each action is stored as an :class:`OfflineAction` and then applied through
the same services the online API uses, so replays obey the lifecycle rules.
Actions are applied in order and independently: one failure is recorded
against its index and does not stop the rest.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework.exceptions import APIException, ValidationError

from dispatch.models import OfflineAction, TransportRequest, User
from dispatch.services import lifecycle, transporters

logger = logging.getLogger(__name__)

R = TransportRequest

REPLAYABLE_STATUSES = (R.STATUS_ACCEPTED, R.STATUS_EN_ROUTE, R.STATUS_WITH_PATIENT,
                       R.STATUS_COMPLETE, R.STATUS_CANCELLED)


def _request_id(payload: dict[str, Any]) -> int:
    try:
        return int(payload.get('request_id'))
    except (TypeError, ValueError):
        raise ValidationError({'request_id': 'A request id is required'})


def _status_update(user: User, payload: dict[str, Any]) -> None:
    transporters.update_own_status(user, payload.get('status'), payload.get('explanation') or '')


def _request_accept(user: User, payload: dict[str, Any]) -> None:
    req = R.objects.filter(pk=_request_id(payload), assigned_to=user).first()
    if req is None:
        raise ValidationError({'request_id': 'Request not found or not assigned to you'})
    if req.status != R.STATUS_ASSIGNED:
        raise ValidationError({'status': 'Request is not in assigned status'})
    lifecycle.transition(req.pk, user, R.STATUS_ACCEPTED)


def _request_status_change(user: User, payload: dict[str, Any]) -> None:
    target = payload.get('new_status')
    if target not in REPLAYABLE_STATUSES:
        raise ValidationError({'new_status': f'Invalid status: {target}'})
    lifecycle.transition(_request_id(payload), user, target)


def _heartbeat(user: User, payload: dict[str, Any]) -> None:
    # received late, so it does not move last_heartbeat
    return None


HANDLERS: dict[str, Callable[[User, dict[str, Any]], None]] = {
    'status_update': _status_update,
    'request_accept': _request_accept,
    'request_status_change': _request_status_change,
    'heartbeat': _heartbeat,
}


def _message(exc: Exception) -> str:
    if isinstance(exc, APIException):
        detail = exc.detail
        if isinstance(detail, dict):
            return '; '.join(f'{k}: {" ".join(map(str, v)) if isinstance(v, list) else v}' for k, v in detail.items())
        if isinstance(detail, list):
            return ' '.join(map(str, detail))
        return str(detail)
    return str(exc)


def sync(user: User, actions: list[dict[str, Any]]) -> dict[str, Any]:
    """Store and apply ``actions``; return processed/failed counts and per-index errors."""
    if not isinstance(actions, list) or not actions:
        raise ValidationError({'actions': 'No actions to process'})
    result: dict[str, Any] = {'processed': 0, 'failed': 0, 'errors': []}
    for index, action in enumerate(actions):
        action = action if isinstance(action, dict) else {}
        action_type = action.get('action_type') or ''
        payload = action.get('payload') if isinstance(action.get('payload'), dict) else {}
        created = parse_datetime(str(action.get('created_offline_at') or '')) or timezone.now()
        record = OfflineAction.objects.create(
            user=user, action_type=action_type[:40], payload=payload, created_offline_at=created,
        )
        try:
            handler = HANDLERS.get(action_type)
            if handler is None:
                raise ValidationError({'action_type': f'Unknown action type: {action_type}'})
            with transaction.atomic():
                handler(user, payload)
        except APIException as exc:
            message = _message(exc)
            OfflineAction.objects.filter(pk=record.pk).update(status='failed', error=message)
            result['failed'] += 1
            result['errors'].append({'index': index, 'error': message})
            logger.info('Offline action %s from %s failed: %s', action_type, user.username, message)
            continue
        OfflineAction.objects.filter(pk=record.pk).update(status='processed', processed_at=timezone.now())
        result['processed'] += 1
    return result


def pending_for(user: User) -> list[dict[str, Any]]:
    return [{
        'id': a.pk,
        'actionType': a.action_type,
        'payload': a.payload,
        'createdOfflineAt': a.created_offline_at.isoformat(),
        'status': a.status,
    } for a in OfflineAction.objects.filter(user=user, status='pending').order_by('created_offline_at', 'id')]
