from datetime import timedelta

import pytest
from django.utils import timezone

from dispatch.models import TransportRequest, TransporterStatus, UserHeartbeat
from dispatch.services import config, lifecycle
from dispatch.services.alerts import AlertScanner, rolling_average_seconds

pytestmark = pytest.mark.django_db

R = TransportRequest


def pending(dispatcher, created, priority='routine', floor='FCC4', room='410'):
    return lifecycle.create_request(
        dispatcher, {'origin_floor': floor, 'room_number': room, 'priority': priority}, now=created,
    )


def kinds(alerts):
    return sorted(a['type'] for a in alerts)


def test_pending_timeout_deduplicated_within_cooldown(dispatcher, events):
    now = timezone.now()
    req = pending(dispatcher, now - timedelta(minutes=6))
    scanner = AlertScanner(cooldown_seconds=300)

    first = scanner.sweep(now)
    second = scanner.sweep(now + timedelta(seconds=30))
    third = scanner.sweep(now + timedelta(seconds=90))

    assert kinds(first) == ['pending_timeout']
    assert first[0]['requestId'] == req.pk
    assert second == [] and third == []
    assert len(events.of('alert_triggered')) == 1

    # once the window has passed the alert fires again
    later = scanner.sweep(now + timedelta(seconds=301))
    assert kinds(later) == ['pending_timeout']


def test_stat_uses_shorter_threshold(dispatcher):
    now = timezone.now()
    pending(dispatcher, now - timedelta(minutes=3), priority='stat')
    pending(dispatcher, now - timedelta(minutes=3), room='411')
    assert kinds(AlertScanner().sweep(now)) == ['stat_timeout']


def test_master_switch_and_toggles(dispatcher):
    now = timezone.now()
    pending(dispatcher, now - timedelta(minutes=10))
    config.set_value('alert_settings', {'alerts': {'pending_timeout': False}})
    assert AlertScanner().sweep(now) == []
    config.set_value('alert_settings', {'master_enabled': False})
    assert AlertScanner().sweep(now) == []


def test_timing_comes_from_alert_settings(dispatcher):
    now = timezone.now()
    pending(dispatcher, now - timedelta(minutes=6))
    config.set_value('alert_settings', {'timing': {'pending_timeout_minutes': 10}})
    assert AlertScanner().sweep(now) == []


def test_malformed_alert_settings_fall_back_to_defaults(dispatcher):
    now = timezone.now()
    pending(dispatcher, now - timedelta(minutes=6))
    config.set_value('alert_settings', {'alerts': None, 'timing': 'x', 'master_enabled': True})
    merged = config.get_alert_settings()
    assert merged['alerts']['pending_timeout'] is True
    assert merged['timing']['pending_timeout_minutes'] == 5
    assert kinds(AlertScanner().sweep(now)) == ['pending_timeout']


def test_acceptance_timeout(dispatcher, transporter):
    now = timezone.now()
    req = pending(dispatcher, now - timedelta(minutes=9))
    lifecycle.assign(req.pk, dispatcher, transporter, now=now - timedelta(minutes=8))
    config.set_value('cycle_time_phase_thresholds', {'acceptance': {'enabled': False, 'minutes': 5}})
    alerts = AlertScanner().sweep(now)
    assert kinds(alerts) == ['acceptance_timeout']
    assert alerts[0]['transporterId'] == transporter.pk


def test_manual_cycle_time_threshold(dispatcher, transporter):
    now = timezone.now()
    req = pending(dispatcher, now - timedelta(minutes=30))
    lifecycle.assign(req.pk, dispatcher, transporter, now=now - timedelta(minutes=29))
    lifecycle.transition(req.pk, transporter, 'accepted', now=now - timedelta(minutes=28))
    lifecycle.transition(req.pk, transporter, 'en_route', now=now - timedelta(minutes=12))

    alerts = AlertScanner().sweep(now)
    assert kinds(alerts) == ['cycle_time']
    assert alerts[0]['phase'] == 'en_route'
    assert alerts[0]['avgSeconds'] == 600


def test_delay_reason_silences_cycle_time(dispatcher, transporter):
    now = timezone.now()
    req = pending(dispatcher, now - timedelta(minutes=30))
    lifecycle.assign(req.pk, dispatcher, transporter, now=now - timedelta(minutes=29))
    lifecycle.transition(req.pk, transporter, 'accepted', now=now - timedelta(minutes=28))
    lifecycle.set_delay_reason(req.pk, transporter, 'patient in imaging')
    assert AlertScanner().sweep(now) == []


def test_rolling_average_mode(dispatcher, make_user):
    now = timezone.now()
    crew = [make_user(f't{i}', status='available') for i in range(3)]
    # two finished transports on FCC4 that took 10 minutes each
    for i, user in enumerate(crew[:2]):
        req = pending(dispatcher, now - timedelta(hours=3), room=f'42{i}')
        start = now - timedelta(hours=2)
        lifecycle.assign(req.pk, dispatcher, user, now=start)
        for step, target in enumerate(['accepted', 'en_route', 'with_patient'], start=1):
            lifecycle.transition(req.pk, user, target, now=start + timedelta(minutes=step))
        lifecycle.transition(req.pk, user, 'complete', now=start + timedelta(minutes=13))
    assert rolling_average_seconds('transport', 'FCC4', 50) == 600

    live = pending(dispatcher, now - timedelta(minutes=30), room='430')
    lifecycle.assign(live.pk, dispatcher, crew[2], now=now - timedelta(minutes=29))
    for target in ['accepted', 'en_route']:
        lifecycle.transition(live.pk, crew[2], target, now=now - timedelta(minutes=28))
    lifecycle.transition(live.pk, crew[2], 'with_patient', now=now - timedelta(minutes=14))

    config.set_value('cycle_time_alert_mode', 'rolling_average')
    alerts = AlertScanner().sweep(now)
    assert kinds(alerts) == ['cycle_time']
    assert alerts[0]['thresholdPercentage'] == 30

    # 14 minutes is within 10 minutes plus 50 %
    config.set_value('cycle_time_threshold_percentage', 50)
    assert AlertScanner().sweep(now) == []


def test_break_alert(make_user):
    now = timezone.now()
    user = make_user('lunch')
    TransporterStatus.objects.create(user=user, status='on_break', on_break_since=now - timedelta(minutes=45))
    alerts = AlertScanner().sweep(now)
    assert kinds(alerts) == ['break']
    assert alerts[0]['userId'] == user.pk


def test_stale_heartbeat_marks_transporter_offline(transporter, events, django_capture_on_commit_callbacks):
    now = timezone.now()
    UserHeartbeat.objects.create(user=transporter, last_heartbeat=now - timedelta(minutes=5))
    with django_capture_on_commit_callbacks(execute=True):
        alerts = AlertScanner().sweep(now)
    assert kinds(alerts) == ['offline']
    ts = TransporterStatus.objects.get(user=transporter)
    assert ts.status == 'offline' and ts.went_offline_at == now
    assert events.of('transporter_status_changed')[-1]['status'] == 'offline'
    # already offline: nothing more to do
    assert AlertScanner().sweep(now + timedelta(minutes=10)) == []


def test_offline_marking_happens_even_when_alert_disabled(transporter):
    now = timezone.now()
    UserHeartbeat.objects.create(user=transporter, last_heartbeat=now - timedelta(minutes=5))
    config.set_value('alert_settings', {'alerts': {'offline_alert': False}})
    assert AlertScanner().sweep(now) == []
    assert TransporterStatus.objects.get(user=transporter).status == 'offline'


def test_fresh_heartbeat_is_left_alone(transporter):
    now = timezone.now()
    UserHeartbeat.objects.create(user=transporter, last_heartbeat=now - timedelta(seconds=30))
    assert AlertScanner().sweep(now) == []
    assert TransporterStatus.objects.get(user=transporter).status == 'available'
