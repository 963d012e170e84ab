"""
Transport request endpoints.

Every status change goes through :mod:`dispatch.services.lifecycle`; the
views only parse input and shape output.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.exceptions import InvalidTransition
from dispatch.models import TransportRequest
from dispatch.permissions import IsDispatcher
from dispatch.serializers.requests import (
    RequestCreateSerializer,
    RequestListQuerySerializer,
    RequestUpdateSerializer,
    request_data,
)
from dispatch.services import lifecycle
from dispatch.services.audit import trail_for
from dispatch.services.auto_assign import AutoAssignMatcher

R = TransportRequest


def _filtered(params: dict):
    qs = R.objects.select_related('created_by', 'assigned_to')
    if params.get('status'):
        qs = qs.filter(status=params['status'])
    elif not params.get('include_complete'):
        qs = qs.exclude(status__in=R.TERMINAL_STATUSES)
    if params.get('floor'):
        qs = qs.filter(origin_floor=params['floor'])
    if params.get('assigned_to'):
        qs = qs.filter(assigned_to_id=params['assigned_to'])
    if params.get('start_date'):
        qs = qs.filter(created_at__gte=params['start_date'])
    if params.get('end_date'):
        qs = qs.filter(created_at__lte=params['end_date'])
    return qs.order_by('-created_at', '-id')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def requests_list(request):
    if request.method == 'GET':
        q = RequestListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        data = [request_data(r) for r in _filtered(q.validated_data)[:500]]
        return Response({'ok': True, 'data': data})

    # role is checked by the service so that the error shape matches
    s = RequestCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = lifecycle.create_request(request.user, s.validated_data)
    return Response({'ok': True, 'data': request_data(req)}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def request_detail(request, request_id: int):
    if request.method == 'GET':
        req = R.objects.select_related('created_by', 'assigned_to').filter(pk=request_id).first()
        if req is None:
            raise NotFound(f'Transport request {request_id} not found')
        data = request_data(req)
        data['history'] = lifecycle.history_for(req.pk)
        data['audit'] = trail_for('transport_request', req.pk)
        return Response({'ok': True, 'data': data})

    s = RequestUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    req = None
    if 'assigned_to' in vd:
        current = R.objects.filter(pk=request_id).values_list('status', flat=True).first()
        if current is None:
            raise NotFound(f'Transport request {request_id} not found')
        if current == R.STATUS_PENDING:
            req = lifecycle.assign(request_id, request.user, vd['assigned_to'])
        elif current == R.STATUS_ASSIGNED:
            req = lifecycle.reassign(request_id, request.user, vd['assigned_to'])
        else:
            raise InvalidTransition(f'Cannot change the assignee of a {current} request')
    if 'status' in vd and not (req is not None and vd['status'] == req.status):
        req = lifecycle.transition(request_id, request.user, vd['status'])
    if 'delay_reason' in vd:
        req = lifecycle.set_delay_reason(request_id, request.user, vd['delay_reason'])
    return Response({'ok': True, 'data': request_data(req)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDispatcher])
def request_cancel(request, request_id: int):
    req = lifecycle.cancel(request_id, request.user)
    return Response({'ok': True, 'data': request_data(req)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def request_claim(request, request_id: int):
    req = lifecycle.claim(request_id, request.user)
    return Response({'ok': True, 'data': request_data(req)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDispatcher])
def request_auto_assign(request, request_id: int):
    req = R.objects.filter(pk=request_id).first()
    if req is None:
        raise NotFound(f'Transport request {request_id} not found')
    if req.status != R.STATUS_PENDING or req.assigned_to_id is not None:
        raise InvalidTransition(f'Only pending, unassigned requests can be auto-assigned (status is {req.status})')
    transporter = AutoAssignMatcher().match_one(req.pk)
    if transporter is None:
        raise ValidationError({'detail': 'No available transporters'})
    req.refresh_from_db()
    return Response({'ok': True, 'data': request_data(req)})
