"""
Runtime configuration endpoints.

Supervisors may read; only managers may write or delete.  Saving
``alert_settings`` pushes ``alert_settings_changed`` to every client so that
open dashboards pick up the change without a reload.
"""
import re

from django.db import transaction
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from dispatch.models import RoleLevel
from dispatch.permissions import IsSupervisor, has_min_role
from dispatch.realtime.fanout import publish_on_commit
from dispatch.services import config
from dispatch.services.audit import log_action

KEY_RE = re.compile(r'^[a-z][a-z0-9_]{0,99}$')


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSupervisor])
def config_list(request):
    return Response({'ok': True, 'data': config.all_values()})


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsSupervisor])
def config_detail(request, key: str):
    if request.method == 'GET':
        value = config.get_value(key)
        if value is None:
            raise NotFound('Config key not found')
        return Response({'ok': True, 'data': {'key': key, 'value': value}})

    if not has_min_role(request.user, RoleLevel.manager):
        raise PermissionDenied('Only managers can change configuration')

    if request.method == 'DELETE':
        with transaction.atomic():
            if not config.delete_value(key):
                raise NotFound('Config key not found')
            log_action(user=request.user, action='config_delete', object_type='config', detail={'key': key})
        return Response({'ok': True})

    if not KEY_RE.match(key):
        raise ValidationError({'key': 'Keys are lower-case letters, digits and underscores'})
    if 'value' not in request.data:
        raise ValidationError({'value': 'Value is required'})
    value = request.data['value']
    with transaction.atomic():
        config.set_value(key, value)
        log_action(user=request.user, action='config_update', object_type='config',
                   detail={'key': key, 'value': value})
        if key == 'alert_settings':
            publish_on_commit('alert_settings_changed', config.get_alert_settings())
    return Response({'ok': True, 'data': {'key': key, 'value': value}})
