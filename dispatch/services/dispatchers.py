"""
Dispatcher sessions.

Dispatchers on duty register a session; at most one active session is the
primary.  Leaving as primary (break or end of session) hands the role to
the named replacement or, failing that, to the longest-serving assistant
who is not on break.  Every change publishes ``dispatcher_changed`` with
the full active list.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from dispatch.models import DispatcherSession, RoleLevel, User
from dispatch.permissions import has_min_role
from dispatch.realtime.fanout import publish_on_commit
from dispatch.services.audit import log_action

logger = logging.getLogger(__name__)


def session_data(s: DispatcherSession) -> dict:
    user = s.user
    return {
        'id': s.pk,
        'userId': user.id,
        'isPrimary': s.is_primary,
        'onBreak': s.on_break,
        'breakStart': s.break_start.isoformat() if s.break_start else None,
        'replacedBy': s.replaced_by_id,
        'reliefInfo': s.relief_info,
        'contactInfo': s.contact_info,
        'startedAt': s.started_at.isoformat(),
        'user': {
            'id': user.id,
            'firstName': user.first_name,
            'lastName': user.last_name,
            'email': user.email,
            'phoneNumber': user.phone_number,
        },
    }


def _active():
    return DispatcherSession.objects.select_related('user').filter(ended_at__isnull=True)


def active_sessions() -> list[dict]:
    return [session_data(s) for s in _active().order_by('-is_primary', 'started_at', 'id')]


def available_replacements(exclude_user_id: Optional[int] = None) -> list[dict]:
    """Active staff who may cover the primary role, with their session if any."""
    sessions = {s.user_id: s for s in _active()}
    users = (User.objects.filter(is_active=True, role__in=('dispatcher', 'supervisor', 'manager'))
             .order_by('first_name', 'last_name', 'username'))
    if exclude_user_id is not None:
        users = users.exclude(pk=exclude_user_id)
    data = []
    for u in users:
        s = sessions.get(u.id)
        data.append({
            'id': u.id,
            'name': u.get_full_name() or u.username,
            'phoneNumber': u.phone_number,
            'sessionId': s.pk if s else None,
            'isPrimary': bool(s and s.is_primary),
            'onBreak': bool(s and s.on_break),
        })
    return data


def _require_dispatcher(user: User) -> None:
    if not has_min_role(user, RoleLevel.dispatcher):
        raise PermissionDenied('Only dispatchers can manage dispatcher sessions')


def _current(user_id: int) -> Optional[DispatcherSession]:
    return _active().filter(user_id=user_id).order_by('-started_at').first()


def _changed() -> None:
    publish_on_commit('dispatcher_changed', {'dispatchers': active_sessions()})


def _promote_oldest_assistant() -> Optional[DispatcherSession]:
    nxt = (_active().filter(on_break=False, is_primary=False)
           .order_by('started_at', 'id').first())
    if nxt is not None:
        DispatcherSession.objects.filter(pk=nxt.pk).update(is_primary=True)
        logger.info('Dispatcher %s promoted to primary', nxt.user_id)
    return nxt


@transaction.atomic
def set_primary(user: User, *, contact_info: Optional[str] = None) -> DispatcherSession:
    _require_dispatcher(user)
    # the previous primary stays on as an assistant
    _active().filter(is_primary=True).exclude(user_id=user.id).update(is_primary=False, replaced_by=user)
    session = _current(user.id)
    if session is None:
        session = DispatcherSession.objects.create(user=user, is_primary=True, contact_info=contact_info or '')
    else:
        session.is_primary = True
        if contact_info is not None:
            session.contact_info = contact_info
        session.save(update_fields=['is_primary', 'contact_info'])
    log_action(user=user, action='dispatcher_primary', object_type='dispatcher_session', object_id=session.pk)
    _changed()
    return session


@transaction.atomic
def register(user: User, *, contact_info: Optional[str] = None) -> DispatcherSession:
    _require_dispatcher(user)
    if _current(user.id) is not None:
        raise ValidationError({'detail': 'Already registered as dispatcher'})
    session = DispatcherSession.objects.create(user=user, is_primary=False, contact_info=contact_info or '')
    _changed()
    return session


@transaction.atomic
def take_break(user: User, *, replacement_user_id: Optional[int] = None, relief_info: str = '',
               now: Optional[datetime] = None) -> DispatcherSession:
    _require_dispatcher(user)
    now = now or timezone.now()
    session = _current(user.id)
    if session is None:
        raise ValidationError({'detail': 'Not currently an active dispatcher'})

    replacement = None
    if replacement_user_id:
        replacement = User.objects.filter(
            pk=replacement_user_id, is_active=True, role__in=('dispatcher', 'supervisor', 'manager'),
        ).first()
        if replacement is None:
            raise ValidationError({'replacement_user_id': 'Invalid replacement user'})

    was_primary = session.is_primary
    session.on_break = True
    session.break_start = now
    session.replaced_by = replacement
    session.relief_info = relief_info or ''
    session.is_primary = False
    session.save(update_fields=['on_break', 'break_start', 'replaced_by', 'relief_info', 'is_primary'])

    if was_primary:
        if replacement is not None:
            cover = _current(replacement.id)
            if cover is None:
                DispatcherSession.objects.create(user=replacement, is_primary=True)
            else:
                DispatcherSession.objects.filter(pk=cover.pk).update(is_primary=True)
        else:
            _promote_oldest_assistant()
    log_action(user=user, action='dispatcher_break', object_type='dispatcher_session', object_id=session.pk,
               detail={'replacement': replacement_user_id, 'wasPrimary': was_primary})
    _changed()
    return session


@transaction.atomic
def return_from_break(user: User, *, as_primary: bool = False) -> DispatcherSession:
    _require_dispatcher(user)
    session = _current(user.id)
    if session is not None and not session.on_break:
        raise ValidationError({'detail': 'Already an active dispatcher'})
    if as_primary:
        _active().filter(is_primary=True).exclude(user_id=user.id).update(is_primary=False)
    if session is None:
        session = DispatcherSession.objects.create(user=user, is_primary=as_primary)
    else:
        session.on_break = False
        session.break_start = None
        session.relief_info = ''
        session.replaced_by = None
        session.is_primary = as_primary
        session.save(update_fields=['on_break', 'break_start', 'relief_info', 'replaced_by', 'is_primary'])
    _changed()
    return session


@transaction.atomic
def end_session(user: User, *, now: Optional[datetime] = None) -> None:
    _require_dispatcher(user)
    now = now or timezone.now()
    was_primary = _active().filter(user_id=user.id, is_primary=True).exists()
    ended = _active().filter(user_id=user.id).update(ended_at=now, is_primary=False)
    if was_primary:
        _promote_oldest_assistant()
    if ended:
        log_action(user=user, action='dispatcher_end', object_type='user', object_id=user.id)
    _changed()
