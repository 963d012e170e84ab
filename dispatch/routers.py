"""
URL mappings for the dispatch API.

All endpoints live under ``/api`` except the health check.  Trailing
slashes are deliberately omitted to match the front-end client.
"""
from django.urls import path

from .auth_views import login_view, logout_view, me_view
from .views import config, dispatchers, health, offline, reports, requests, shifts, status, users


urlpatterns = [
    path('healthz', health.healthz, name='healthz'),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/logout', logout_view, name='logout_view'),
    path('api/auth/me', me_view, name='me_view'),
    # Staff accounts
    path('api/users', users.users_list, name='users_list'),
    path('api/users/<int:user_id>', users.user_update, name='user_update'),
    # Transporter status
    path('api/status', status.status_board, name='status_board'),
    path('api/status/heartbeat', status.heartbeat, name='heartbeat'),
    path('api/status/<int:user_id>/override', status.status_override, name='status_override'),
    # Transport requests
    path('api/requests', requests.requests_list, name='requests_list'),
    path('api/requests/<int:request_id>', requests.request_detail, name='request_detail'),
    path('api/requests/<int:request_id>/cancel', requests.request_cancel, name='request_cancel'),
    path('api/requests/<int:request_id>/claim', requests.request_claim, name='request_claim'),
    path('api/requests/<int:request_id>/auto-assign', requests.request_auto_assign, name='request_auto_assign'),
    # Reports
    path('api/reports/summary', reports.report_summary, name='report_summary'),
    path('api/reports/by-transporter', reports.report_by_transporter, name='report_by_transporter'),
    path('api/reports/by-floor', reports.report_by_floor, name='report_by_floor'),
    path('api/reports/by-hour', reports.report_by_hour, name='report_by_hour'),
    # Shifts
    path('api/shifts/start', shifts.shift_start, name='shift_start'),
    path('api/shifts/end', shifts.shift_end, name='shift_end'),
    path('api/shifts/extension', shifts.shift_extension, name='shift_extension'),
    path('api/shifts/current', shifts.shift_current, name='shift_current'),
    path('api/shifts/history', shifts.shift_history, name='shift_history'),
    path('api/shifts/<int:user_id>/force-end', shifts.shift_force_end, name='shift_force_end'),
    # Dispatcher sessions
    path('api/dispatchers/active', dispatchers.dispatchers_active, name='dispatchers_active'),
    path('api/dispatchers/available', dispatchers.dispatchers_available, name='dispatchers_available'),
    path('api/dispatchers/set-primary', dispatchers.dispatcher_set_primary, name='dispatcher_set_primary'),
    path('api/dispatchers/register', dispatchers.dispatcher_register, name='dispatcher_register'),
    path('api/dispatchers/take-break', dispatchers.dispatcher_take_break, name='dispatcher_take_break'),
    path('api/dispatchers/return', dispatchers.dispatcher_return, name='dispatcher_return'),
    path('api/dispatchers/end-session', dispatchers.dispatcher_end_session, name='dispatcher_end_session'),
    # Runtime configuration
    path('api/config', config.config_list, name='config_list'),
    path('api/config/<str:key>', config.config_detail, name='config_detail'),
    # Offline replay
    path('api/offline/sync', offline.offline_sync, name='offline_sync'),
    path('api/offline/pending', offline.offline_pending, name='offline_pending'),
]
