from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.services import offline


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def offline_sync(request):
    """Replay a client's queued actions in order; failures are reported by index."""
    result = offline.sync(request.user, request.data.get('actions'))
    return Response({'ok': True, 'data': result})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def offline_pending(request):
    return Response({'ok': True, 'data': offline.pending_for(request.user)})
