from rest_framework import serializers
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.models import FLOOR_CHOICES
from dispatch.permissions import IsSupervisor
from dispatch.services import shifts


class ShiftStartSerializer(serializers.Serializer):
    extension = serializers.CharField(max_length=20, required=False, allow_blank=True)
    floor_assignment = serializers.ChoiceField(choices=FLOOR_CHOICES, required=False, allow_null=True)


class ShiftHistoryQuerySerializer(serializers.Serializer):
    user_id = serializers.IntegerField(required=False)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def shift_start(request):
    s = ShiftStartSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    shift = shifts.start_shift(request.user, **s.validated_data)
    return Response({'ok': True, 'data': shifts.shift_data(shift)}, status=201)


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def shift_end(request):
    shift = shifts.end_shift(request.user)
    return Response({'ok': True, 'data': shifts.shift_data(shift)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def shift_force_end(request, user_id: int):
    """Primary dispatcher or supervisor ends someone else's shift."""
    shift = shifts.force_end_shift(request.user, user_id)
    return Response({'ok': True, 'data': shifts.shift_data(shift)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def shift_extension(request):
    shift = shifts.update_extension(request.user, request.data.get('extension'))
    return Response({'ok': True, 'data': shifts.shift_data(shift)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def shift_current(request):
    shift = shifts.current_shift(request.user.id)
    return Response({'ok': True, 'data': shifts.shift_data(shift) if shift else None})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSupervisor])
def shift_history(request):
    q = ShiftHistoryQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    data = shifts.shift_history(user_id=vd.get('user_id'), start=vd.get('start_date'), end=vd.get('end_date'))
    return Response({'ok': True, 'data': data})
