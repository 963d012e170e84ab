import html

import bleach
from rest_framework import serializers

from dispatch.models import FLOOR_CHOICES, TransportRequest, User


def _iso(value):
    return value.isoformat() if value else None


def _person(user):
    if user is None:
        return None
    return {'id': user.id, 'username': user.username, 'name': user.get_full_name() or user.username}


def request_data(req: TransportRequest) -> dict:
    """JSON-ready representation used by the API and realtime events."""
    return {
        'id': req.pk,
        'originFloor': req.origin_floor,
        'roomNumber': req.room_number,
        'patientInitials': req.patient_initials,
        'destination': req.destination,
        'priority': req.priority,
        'specialNeeds': list(req.special_needs or []),
        'notes': req.notes,
        'status': req.status,
        'assignmentMethod': req.assignment_method,
        'delayReason': req.delay_reason,
        'createdBy': _person(req.created_by) if req.created_by_id else None,
        'assignedTo': _person(req.assigned_to) if req.assigned_to_id else None,
        'createdAt': _iso(req.created_at),
        'assignedAt': _iso(req.assigned_at),
        'acceptedAt': _iso(req.accepted_at),
        'enRouteAt': _iso(req.en_route_at),
        'withPatientAt': _iso(req.with_patient_at),
        'completedAt': _iso(req.completed_at),
        'cancelledAt': _iso(req.cancelled_at),
    }


class ActiveUserField(serializers.PrimaryKeyRelatedField):
    def get_queryset(self):
        return User.objects.filter(is_active=True)


class RequestCreateSerializer(serializers.Serializer):
    origin_floor = serializers.ChoiceField(choices=FLOOR_CHOICES)
    room_number = serializers.CharField(max_length=20)
    patient_initials = serializers.CharField(max_length=5, required=False, allow_blank=True)
    destination = serializers.CharField(max_length=100, required=False, allow_blank=True)
    priority = serializers.ChoiceField(choices=TransportRequest.PRIORITY_CHOICES, default=TransportRequest.PRIORITY_ROUTINE)
    special_needs = serializers.ListField(
        child=serializers.ChoiceField(choices=TransportRequest.SPECIAL_NEEDS), required=False
    )
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    assigned_to = ActiveUserField(required=False, allow_null=True)
    auto_assign = serializers.BooleanField(required=False, default=False)

    def validate_notes(self, v):
        return html.unescape(bleach.clean((v or '').strip(), tags=[], strip=True))

    def validate_room_number(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('Room number is required')
        return v


class RequestUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=TransportRequest.STATUS_CHOICES, required=False)
    assigned_to = ActiveUserField(required=False)
    delay_reason = serializers.CharField(required=False, allow_blank=False, max_length=1000)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Nothing to update')
        return attrs


class RequestListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=TransportRequest.STATUS_CHOICES, required=False)
    floor = serializers.ChoiceField(choices=FLOOR_CHOICES, required=False)
    assigned_to = serializers.IntegerField(required=False)
    include_complete = serializers.BooleanField(required=False, default=False)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
