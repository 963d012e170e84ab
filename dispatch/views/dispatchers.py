"""Dispatcher session endpoints."""
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.permissions import IsDispatcher
from dispatch.services import dispatchers


def _contact(request):
    value = request.data.get('contact_info')
    return value.strip() if isinstance(value, str) else None


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def dispatchers_active(request):
    return Response({'ok': True, 'data': dispatchers.active_sessions()})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDispatcher])
def dispatchers_available(request):
    return Response({'ok': True, 'data': dispatchers.available_replacements(exclude_user_id=request.user.id)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDispatcher])
def dispatcher_set_primary(request):
    session = dispatchers.set_primary(request.user, contact_info=_contact(request))
    return Response({'ok': True, 'data': dispatchers.session_data(session)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDispatcher])
def dispatcher_register(request):
    session = dispatchers.register(request.user, contact_info=_contact(request))
    return Response({'ok': True, 'data': dispatchers.session_data(session)}, status=201)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDispatcher])
def dispatcher_take_break(request):
    replacement = request.data.get('replacement_user_id')
    try:
        replacement = int(replacement) if replacement not in (None, '') else None
    except (TypeError, ValueError):
        replacement = -1  # rejected by the service as an invalid user
    session = dispatchers.take_break(
        request.user,
        replacement_user_id=replacement,
        relief_info=(request.data.get('relief_info') or '').strip(),
    )
    return Response({'ok': True, 'data': dispatchers.session_data(session)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDispatcher])
def dispatcher_return(request):
    as_primary = str(request.data.get('as_primary', '')).lower() in ('1', 'true', 'yes')
    session = dispatchers.return_from_break(request.user, as_primary=as_primary)
    return Response({'ok': True, 'data': dispatchers.session_data(session)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDispatcher])
def dispatcher_end_session(request):
    dispatchers.end_session(request.user)
    return Response({'ok': True})
