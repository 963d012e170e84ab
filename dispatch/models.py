"""
Database models for the transport dispatch backend.

These models capture the concepts of the system: staff users with a role,
transport requests moving through a status lifecycle, the append-only
history of those transitions, transporter presence (status, heartbeats and
shifts), dispatcher sessions and a small key/value store of runtime
configuration.  Only :mod:`dispatch.services.lifecycle` writes request
status and milestone timestamps.
"""
from __future__ import annotations

import re
from enum import IntEnum

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


# ---------------------------------------------------------------------
# Floors and rooms
# ---------------------------------------------------------------------
FLOOR_CHOICES = [
    ('FCC1', 'FCC1'),
    ('FCC4', 'FCC4'),
    ('FCC5', 'FCC5'),
    ('FCC6', 'FCC6'),
]

# Inclusive room-number range for each floor.
FLOOR_ROOM_RANGES: dict[str, tuple[int, int]] = {
    'FCC1': (100, 199),
    'FCC4': (400, 499),
    'FCC5': (500, 599),
    'FCC6': (600, 699),
}

ROOM_NUMBER_RE = re.compile(r'^\d{3}[A-Za-z0-9\-/]*$')
_LEADING_DIGITS_RE = re.compile(r'^(\d+)')


def validate_room_for_floor(floor: str, room_number: str) -> None:
    """Raise ``ValidationError`` unless ``room_number`` belongs to ``floor``.

    A room number starts with three digits and may carry a suffix such as
    ``150A`` or ``150-2``; only the leading integer is range checked.
    """
    if floor not in FLOOR_ROOM_RANGES:
        raise ValidationError({'origin_floor': f'Unknown floor {floor!r}'})
    room_number = (room_number or '').strip()
    if not ROOM_NUMBER_RE.match(room_number):
        raise ValidationError({'room_number': 'Room number must start with three digits'})
    number = int(_LEADING_DIGITS_RE.match(room_number).group(1))
    low, high = FLOOR_ROOM_RANGES[floor]
    if not low <= number <= high:
        raise ValidationError({'room_number': f'Room {room_number} is not on {floor} ({low}-{high})'})


# ---------------------------------------------------------------------
# Users and roles
# ---------------------------------------------------------------------
class RoleLevel(IntEnum):
    """Ordered role hierarchy; higher values include lower privileges."""
    transporter = 1
    dispatcher = 2
    supervisor = 3
    manager = 4


class User(AbstractUser):
    """Staff user with a single role.

    ``primary_floor`` is used as a floor-affinity hint by the auto-assign
    matcher.  ``is_active`` gates login and auto-assignment.
    """
    ROLE_CHOICES = [(r.name, r.name.title()) for r in RoleLevel]

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='transporter', db_index=True)
    primary_floor = models.CharField(max_length=10, choices=FLOOR_CHOICES, blank=True, null=True)
    phone_number = models.CharField(max_length=32, blank=True)
    include_in_analytics = models.BooleanField(default=True)

    @property
    def role_level(self) -> int:
        try:
            return RoleLevel[self.role]
        except KeyError:
            return 0

    def has_role(self, minimum: str | RoleLevel) -> bool:
        if isinstance(minimum, str):
            minimum = RoleLevel[minimum]
        return self.role_level >= minimum

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


# ---------------------------------------------------------------------
# Transport requests
# ---------------------------------------------------------------------
class TransportRequest(models.Model):
    """A request to move a patient from a floor room to a destination."""
    STATUS_PENDING = 'pending'
    STATUS_ASSIGNED = 'assigned'
    STATUS_ACCEPTED = 'accepted'
    STATUS_EN_ROUTE = 'en_route'
    STATUS_WITH_PATIENT = 'with_patient'
    STATUS_COMPLETE = 'complete'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_ASSIGNED, 'Assigned'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_EN_ROUTE, 'En route'),
        (STATUS_WITH_PATIENT, 'With patient'),
        (STATUS_COMPLETE, 'Complete'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    TERMINAL_STATUSES = (STATUS_COMPLETE, STATUS_CANCELLED)
    ACTIVE_STATUSES = (STATUS_ASSIGNED, STATUS_ACCEPTED, STATUS_EN_ROUTE, STATUS_WITH_PATIENT)

    # Milestone timestamp written when the request enters each status.
    MILESTONE_FIELDS = {
        STATUS_PENDING: 'created_at',
        STATUS_ASSIGNED: 'assigned_at',
        STATUS_ACCEPTED: 'accepted_at',
        STATUS_EN_ROUTE: 'en_route_at',
        STATUS_WITH_PATIENT: 'with_patient_at',
        STATUS_COMPLETE: 'completed_at',
        STATUS_CANCELLED: 'cancelled_at',
    }

    PRIORITY_ROUTINE = 'routine'
    PRIORITY_STAT = 'stat'
    PRIORITY_CHOICES = [
        (PRIORITY_ROUTINE, 'Routine'),
        (PRIORITY_STAT, 'STAT'),
    ]

    SPECIAL_NEEDS = ('wheelchair', 'o2', 'iv_pump', 'other')

    METHOD_CHOICES = [
        ('manual', 'Manual'),
        ('claim', 'Claim'),
        ('auto', 'Auto'),
    ]

    origin_floor = models.CharField(max_length=10, choices=FLOOR_CHOICES, db_index=True)
    room_number = models.CharField(max_length=20)
    patient_initials = models.CharField(max_length=5, blank=True)
    destination = models.CharField(max_length=100, default='Atrium')
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default=PRIORITY_ROUTINE)
    special_needs = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    assignment_method = models.CharField(max_length=10, choices=METHOD_CHOICES, blank=True, null=True)
    delay_reason = models.TextField(blank=True)

    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='created_requests'
    )
    assigned_to = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='assigned_requests'
    )

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    en_route_at = models.DateTimeField(null=True, blank=True)
    with_patient_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'priority', 'created_at'], name='dispatch_tr_status_f6a1c2_idx'),
            models.Index(fields=['assigned_to', 'status'], name='dispatch_tr_assigne_3b9d7e_idx'),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def milestone(self, status: str | None = None):
        """Return the timestamp at which the request entered ``status``."""
        return getattr(self, self.MILESTONE_FIELDS[status or self.status])

    def clean(self) -> None:
        validate_room_for_floor(self.origin_floor, self.room_number)

    def __str__(self) -> str:
        return f"#{self.pk} {self.origin_floor}/{self.room_number} ({self.status})"


class StatusHistory(models.Model):
    """Append-only log of request status transitions.

    ``user`` is ``None`` for transitions performed by background services.
    ``from_status`` is ``None`` for the creation row.
    """
    request = models.ForeignKey(TransportRequest, on_delete=models.CASCADE, related_name='history')
    user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    timestamp = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['timestamp', 'id']
        verbose_name_plural = 'status history'

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError('Status history rows are immutable')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError('Status history rows cannot be deleted')

    def __str__(self) -> str:
        return f"#{self.request_id}: {self.from_status} -> {self.to_status}"


# ---------------------------------------------------------------------
# Transporter presence
# ---------------------------------------------------------------------
class TransporterStatus(models.Model):
    """Current availability of one staff member, overwritten on change."""
    STATUS_AVAILABLE = 'available'
    STATUS_ASSIGNED = 'assigned'
    STATUS_ON_BREAK = 'on_break'
    STATUS_OFF_UNIT = 'off_unit'
    STATUS_OFFLINE = 'offline'
    STATUS_CHOICES = [
        (STATUS_AVAILABLE, 'Available'),
        (STATUS_ASSIGNED, 'Assigned'),
        ('accepted', 'Accepted'),
        ('en_route', 'En route'),
        ('with_patient', 'With patient'),
        (STATUS_ON_BREAK, 'On break'),
        (STATUS_OFF_UNIT, 'Off unit'),
        (STATUS_OFFLINE, 'Offline'),
    ]
    # Statuses a user may set on themselves.
    SELF_SETTABLE = (STATUS_AVAILABLE, STATUS_ON_BREAK, STATUS_OFF_UNIT, STATUS_OFFLINE)

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='transporter_status')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_OFFLINE, db_index=True)
    status_explanation = models.CharField(max_length=255, blank=True)
    on_break_since = models.DateTimeField(null=True, blank=True)
    went_offline_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name_plural = 'transporter statuses'

    def __str__(self) -> str:
        return f"{self.user.username}: {self.status}"


class UserHeartbeat(models.Model):
    """Last liveness signal seen from a user's client."""
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='heartbeat')
    last_heartbeat = models.DateTimeField(default=timezone.now, db_index=True)
    channel_name = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.user.username} @ {self.last_heartbeat:%H:%M:%S}"


class ShiftLog(models.Model):
    """One working shift; open while ``shift_end`` is null."""
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='shifts')
    shift_start = models.DateTimeField(default=timezone.now)
    shift_end = models.DateTimeField(null=True, blank=True)
    extension = models.CharField(max_length=20, blank=True)
    floor_assignment = models.CharField(max_length=10, choices=FLOOR_CHOICES, blank=True, null=True)

    class Meta:
        indexes = [models.Index(fields=['user', 'shift_end'], name='dispatch_sh_user_id_8c4e21_idx')]

    def __str__(self) -> str:
        return f"{self.user.username} from {self.shift_start:%Y-%m-%d %H:%M}"


# ---------------------------------------------------------------------
# Dispatcher coordination
# ---------------------------------------------------------------------
class DispatcherSession(models.Model):
    """A dispatcher on duty; at most one active session is primary."""
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='dispatcher_sessions')
    is_primary = models.BooleanField(default=False)
    on_break = models.BooleanField(default=False)
    break_start = models.DateTimeField(null=True, blank=True)
    contact_info = models.CharField(max_length=100, blank=True)
    relief_info = models.CharField(max_length=255, blank=True)
    replaced_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True, db_index=True)

    def __str__(self) -> str:
        tag = 'primary' if self.is_primary else 'assistant'
        return f"{self.user.username} ({tag})"


# ---------------------------------------------------------------------
# Runtime configuration, offline replay and audit
# ---------------------------------------------------------------------
class SystemConfig(models.Model):
    key = models.CharField(max_length=100, primary_key=True)
    value = models.JSONField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.key


class OfflineAction(models.Model):
    """An action recorded by a disconnected client and replayed on sync."""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processed', 'Processed'),
        ('failed', 'Failed'),
    ]
    ACTION_TYPES = ('status_update', 'request_accept', 'request_status_change', 'heartbeat')

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='offline_actions')
    action_type = models.CharField(max_length=40)
    payload = models.JSONField(default=dict, blank=True)
    created_offline_at = models.DateTimeField(default=timezone.now)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending', db_index=True)
    error = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.user.username}:{self.action_type} ({self.status})"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='dispatch_au_action_5e2f90_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='dispatch_au_object__a71c3d_idx'),
        ]
