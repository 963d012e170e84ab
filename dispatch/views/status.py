"""Transporter availability and heartbeats."""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.permissions import IsSupervisor
from dispatch.services import transporters
from dispatch.services.transporters import status_payload


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def status_board(request):
    """GET: every active user's status and current job.  PUT: set your own status."""
    if request.method == 'GET':
        return Response({'ok': True, 'data': transporters.list_statuses()})
    ts = transporters.update_own_status(
        request.user,
        request.data.get('status'),
        (request.data.get('explanation') or '').strip(),
    )
    return Response({'ok': True, 'data': status_payload(ts)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsSupervisor])
def status_override(request, user_id: int):
    ts = transporters.override_status(
        request.user, user_id,
        request.data.get('status'),
        (request.data.get('explanation') or '').strip(),
    )
    return Response({'ok': True, 'data': status_payload(ts)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def heartbeat(request):
    hb = transporters.record_heartbeat(request.user)
    return Response({'ok': True, 'data': {'lastHeartbeat': hb.last_heartbeat.isoformat()}})
