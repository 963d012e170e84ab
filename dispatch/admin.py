"""
Django admin registrations for the dispatch models.

Status history is shown read-only: rows are append-only and are written
by the lifecycle engine alone.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import (
    AuditEvent,
    DispatcherSession,
    OfflineAction,
    ShiftLog,
    StatusHistory,
    SystemConfig,
    TransportRequest,
    TransporterStatus,
    User,
    UserHeartbeat,
)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('username', 'first_name', 'last_name', 'role', 'primary_floor', 'is_active')
    list_filter = ('role', 'primary_floor', 'is_active')
    search_fields = ('username', 'first_name', 'last_name', 'email')
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Dispatch', {'fields': ('role', 'primary_floor', 'phone_number', 'include_in_analytics')}),
    )


class StatusHistoryInline(admin.TabularInline):
    model = StatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ('from_status', 'to_status', 'user', 'timestamp')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(TransportRequest)
class TransportRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'origin_floor', 'room_number', 'priority', 'status', 'assigned_to', 'created_at')
    list_filter = ('status', 'priority', 'origin_floor', 'assignment_method')
    search_fields = ('id', 'room_number', 'patient_initials', 'assigned_to__username')
    # status and milestones only change through the lifecycle engine
    readonly_fields = ('status', 'assigned_to', 'assignment_method', 'created_at', 'assigned_at',
                       'accepted_at', 'en_route_at', 'with_patient_at', 'completed_at', 'cancelled_at')
    inlines = [StatusHistoryInline]


@admin.register(StatusHistory)
class StatusHistoryAdmin(admin.ModelAdmin):
    list_display = ('request', 'from_status', 'to_status', 'user', 'timestamp')
    list_filter = ('to_status',)
    search_fields = ('request__id', 'user__username')

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(TransporterStatus)
class TransporterStatusAdmin(admin.ModelAdmin):
    list_display = ('user', 'status', 'status_explanation', 'updated_at')
    list_filter = ('status',)
    search_fields = ('user__username',)


@admin.register(UserHeartbeat)
class UserHeartbeatAdmin(admin.ModelAdmin):
    list_display = ('user', 'last_heartbeat')
    search_fields = ('user__username',)


@admin.register(ShiftLog)
class ShiftLogAdmin(admin.ModelAdmin):
    list_display = ('user', 'shift_start', 'shift_end', 'extension', 'floor_assignment')
    list_filter = ('floor_assignment',)
    search_fields = ('user__username', 'extension')


@admin.register(DispatcherSession)
class DispatcherSessionAdmin(admin.ModelAdmin):
    list_display = ('user', 'is_primary', 'on_break', 'started_at', 'ended_at')
    list_filter = ('is_primary', 'on_break')


@admin.register(SystemConfig)
class SystemConfigAdmin(admin.ModelAdmin):
    list_display = ('key', 'updated_at')
    search_fields = ('key',)


@admin.register(OfflineAction)
class OfflineActionAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'action_type', 'status', 'created_offline_at', 'processed_at')
    list_filter = ('status', 'action_type')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'action', 'user', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('user__username',)
