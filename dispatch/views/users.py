"""Staff account administration (manager only)."""
from __future__ import annotations

from django.db import transaction
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.models import TransporterStatus, User
from dispatch.permissions import IsManager
from dispatch.serializers.auth import UserWriteSerializer, user_data
from dispatch.services.audit import log_action


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsManager])
def users_list(request):
    if request.method == 'GET':
        qs = User.objects.order_by('role', 'last_name', 'first_name', 'username')
        role = request.query_params.get('role')
        if role:
            qs = qs.filter(role=role)
        if request.query_params.get('active') in ('1', 'true'):
            qs = qs.filter(is_active=True)
        return Response({'ok': True, 'data': [user_data(u) for u in qs]})

    s = UserWriteSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    with transaction.atomic():
        user = s.save()
        # every user gets a status row so they show up on the board
        TransporterStatus.objects.get_or_create(user=user)
        log_action(user=request.user, action='user_create', object_type='user', object_id=user.id,
                   detail={'username': user.username, 'role': user.role})
    return Response({'ok': True, 'data': user_data(user)}, status=status.HTTP_201_CREATED)


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsManager])
def user_update(request, user_id: int):
    user = get_object_or_404(User, pk=user_id)
    s = UserWriteSerializer(user, data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    with transaction.atomic():
        user = s.save()
        changed = sorted(k for k in s.validated_data if k != 'password')
        if 'password' in s.validated_data:
            changed.append('password')
        log_action(user=request.user, action='user_update', object_type='user', object_id=user.id,
                   detail={'fields': changed})
    return Response({'ok': True, 'data': user_data(user)})
