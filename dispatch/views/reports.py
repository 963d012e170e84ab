from rest_framework import serializers
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.models import FLOOR_CHOICES
from dispatch.permissions import IsSupervisor
from dispatch.services import reports


class ReportQuerySerializer(serializers.Serializer):
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
    floor = serializers.ChoiceField(choices=FLOOR_CHOICES, required=False)
    transporter_id = serializers.IntegerField(required=False)
    shift_start = serializers.IntegerField(required=False, min_value=0, max_value=23)
    shift_end = serializers.IntegerField(required=False, min_value=1, max_value=24)


def _filters(request) -> dict:
    q = ReportQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    return {
        'start': vd.get('start_date'),
        'end': vd.get('end_date'),
        'floor': vd.get('floor'),
        'transporter_id': vd.get('transporter_id'),
        'shift_start': vd.get('shift_start'),
        'shift_end': vd.get('shift_end'),
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSupervisor])
def report_summary(request):
    return Response({'ok': True, 'data': reports.summary(**_filters(request))})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSupervisor])
def report_by_transporter(request):
    return Response({'ok': True, 'data': reports.by_transporter(**_filters(request))})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSupervisor])
def report_by_floor(request):
    return Response({'ok': True, 'data': reports.by_floor(**_filters(request))})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSupervisor])
def report_by_hour(request):
    return Response({'ok': True, 'data': reports.by_hour(**_filters(request))})
