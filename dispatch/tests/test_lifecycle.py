from datetime import timedelta

import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from dispatch.exceptions import Conflict, InvalidTransition
from dispatch.models import StatusHistory, TransportRequest, TransporterStatus
from dispatch.services import config, lifecycle

pytestmark = pytest.mark.django_db

R = TransportRequest


def new_request(actor, **overrides):
    data = {'origin_floor': 'FCC4', 'room_number': '412', 'priority': 'routine'}
    data.update(overrides)
    return lifecycle.create_request(actor, data)


def test_create_round_trips_fields(dispatcher):
    req = new_request(dispatcher, room_number='150A', origin_floor='FCC1', priority='stat',
                      special_needs=['wheelchair', 'o2', 'wheelchair'], patient_initials='JD',
                      notes='<b>fragile</b> patient')
    req = R.objects.get(pk=req.pk)
    assert (req.origin_floor, req.room_number, req.priority) == ('FCC1', '150A', 'stat')
    assert req.special_needs == ['wheelchair', 'o2']
    assert req.notes == 'fragile patient'
    assert req.status == R.STATUS_PENDING
    assert req.destination == 'Atrium'
    rows = list(StatusHistory.objects.filter(request=req).values_list('from_status', 'to_status'))
    assert rows == [(None, 'pending')]


@pytest.mark.parametrize('floor,room', [('FCC1', '450'), ('FCC6', '599'), ('FCC4', 'A12'), ('FCC5', '')])
def test_create_rejects_room_outside_floor(dispatcher, floor, room):
    with pytest.raises(ValidationError):
        new_request(dispatcher, origin_floor=floor, room_number=room)
    assert not R.objects.exists()


def test_transporter_cannot_create(transporter):
    with pytest.raises(PermissionDenied):
        new_request(transporter)


def test_full_lifecycle_writes_milestones_and_history(dispatcher, transporter, django_capture_on_commit_callbacks, events):
    t0 = timezone.now()
    with django_capture_on_commit_callbacks(execute=True):
        req = new_request(dispatcher)
        lifecycle.assign(req.pk, dispatcher, transporter, now=t0 + timedelta(minutes=1))
        for i, target in enumerate(['accepted', 'en_route', 'with_patient', 'complete'], start=2):
            lifecycle.transition(req.pk, transporter, target, now=t0 + timedelta(minutes=i))

    req.refresh_from_db()
    assert req.status == 'complete'
    assert req.assignment_method == 'manual'
    stamps = [req.assigned_at, req.accepted_at, req.en_route_at, req.with_patient_at, req.completed_at]
    assert all(stamps) and stamps == sorted(stamps)
    history = list(req.history.values_list('from_status', 'to_status'))
    assert history == [
        (None, 'pending'), ('pending', 'assigned'), ('assigned', 'accepted'),
        ('accepted', 'en_route'), ('en_route', 'with_patient'), ('with_patient', 'complete'),
    ]
    # transporter is free again once the job is done
    assert TransporterStatus.objects.get(user=transporter).status == 'available'
    assert events.names().count('request_status_changed') == 4
    assert 'request_assigned' in events.names() and 'request_created' in events.names()


@pytest.mark.parametrize('target', ['accepted', 'en_route', 'with_patient', 'complete', 'pending'])
def test_disallowed_edge_leaves_row_unchanged(dispatcher, target):
    req = new_request(dispatcher)
    with pytest.raises(InvalidTransition):
        lifecycle.transition(req.pk, dispatcher, target)
    req.refresh_from_db()
    assert req.status == 'pending'
    assert req.history.count() == 1


@pytest.mark.parametrize('final', ['complete', 'cancelled'])
def test_terminal_requests_accept_nothing(dispatcher, transporter, final):
    req = new_request(dispatcher)
    lifecycle.assign(req.pk, dispatcher, transporter)
    if final == 'complete':
        for target in ['accepted', 'en_route', 'with_patient', 'complete']:
            lifecycle.transition(req.pk, transporter, target)
    else:
        lifecycle.cancel(req.pk, dispatcher)
    count = StatusHistory.objects.filter(request_id=req.pk).count()
    for target in ['pending', 'assigned', 'accepted', 'cancelled', 'complete']:
        with pytest.raises(InvalidTransition):
            lifecycle.transition(req.pk, dispatcher, target)
    assert StatusHistory.objects.filter(request_id=req.pk).count() == count


def test_only_assignee_advances_job(dispatcher, transporter, make_user):
    other = make_user('trans2')
    req = new_request(dispatcher)
    lifecycle.assign(req.pk, dispatcher, transporter)
    with pytest.raises(PermissionDenied):
        lifecycle.transition(req.pk, other, 'accepted')
    with pytest.raises(PermissionDenied):
        lifecycle.cancel(req.pk, transporter)
    assert R.objects.get(pk=req.pk).status == 'assigned'


def test_second_claim_conflicts(dispatcher, transporter, make_user):
    rival = make_user('trans2', status='available')
    req = new_request(dispatcher)
    lifecycle.claim(req.pk, transporter)
    with pytest.raises(Conflict):
        lifecycle.claim(req.pk, rival)
    req.refresh_from_db()
    assert req.assigned_to == transporter
    assert req.assignment_method == 'claim'
    assert StatusHistory.objects.filter(request=req, from_status='pending', to_status='assigned').count() == 1


def test_claim_of_cancelled_request_is_invalid(dispatcher, transporter):
    req = new_request(dispatcher)
    lifecycle.cancel(req.pk, dispatcher)
    with pytest.raises(InvalidTransition):
        lifecycle.claim(req.pk, transporter)


def test_claim_while_busy_is_rejected(dispatcher, transporter):
    first = new_request(dispatcher)
    second = new_request(dispatcher, room_number='420')
    lifecycle.claim(first.pk, transporter)
    with pytest.raises(ValidationError):
        lifecycle.claim(second.pk, transporter)
    assert R.objects.get(pk=second.pk).status == 'pending'


def test_claim_can_accept_in_one_step(dispatcher, transporter):
    config.set_value('claim_target_status', 'accepted')
    req = lifecycle.claim(new_request(dispatcher).pk, transporter)
    assert req.status == 'accepted'
    assert list(req.history.values_list('to_status', flat=True)) == ['pending', 'assigned', 'accepted']


def test_assign_rejects_inactive_assignee(dispatcher, make_user):
    gone = make_user('gone', is_active=False)
    req = new_request(dispatcher)
    with pytest.raises(ValidationError):
        lifecycle.assign(req.pk, dispatcher, gone)
    assert R.objects.get(pk=req.pk).assigned_to is None


def test_reassign_moves_job_without_history_row(dispatcher, transporter, make_user):
    other = make_user('trans2', status='available')
    req = new_request(dispatcher)
    lifecycle.assign(req.pk, dispatcher, transporter)
    lifecycle.reassign(req.pk, dispatcher, other)
    req.refresh_from_db()
    assert req.assigned_to == other
    assert req.history.count() == 2
    assert TransporterStatus.objects.get(user=transporter).status == 'available'
    assert TransporterStatus.objects.get(user=other).status == 'assigned'


def test_reassign_after_accept_is_invalid(dispatcher, transporter, make_user):
    other = make_user('trans2')
    req = new_request(dispatcher)
    lifecycle.assign(req.pk, dispatcher, transporter)
    lifecycle.transition(req.pk, transporter, 'accepted')
    with pytest.raises(InvalidTransition):
        lifecycle.reassign(req.pk, dispatcher, other)


def test_delay_reason_acknowledges_current_phase(dispatcher, transporter):
    req = new_request(dispatcher)
    lifecycle.assign(req.pk, dispatcher, transporter)
    lifecycle.transition(req.pk, transporter, 'accepted')
    req = lifecycle.set_delay_reason(req.pk, transporter, 'elevator out of service')
    assert req.delay_reason == 'elevator out of service'
    assert cache.get(lifecycle.delay_ack_key(req.pk, 'pickup'))
    assert not cache.get(lifecycle.delay_ack_key(req.pk, 'acceptance'))


def test_missing_request_is_not_found(dispatcher):
    from rest_framework.exceptions import NotFound
    with pytest.raises(NotFound):
        lifecycle.transition(9999, dispatcher, 'cancelled')


def test_write_against_stale_read_conflicts(dispatcher, transporter, monkeypatch):
    req = new_request(dispatcher)
    stale = R.objects.get(pk=req.pk)
    lifecycle.cancel(req.pk, dispatcher)
    history = StatusHistory.objects.filter(request=req).count()
    # the validation read still sees ``pending``
    monkeypatch.setattr(lifecycle, '_load', lambda request_id: stale)

    with pytest.raises(Conflict):
        lifecycle.assign(req.pk, dispatcher, transporter)
    with pytest.raises(Conflict):
        lifecycle.claim(req.pk, transporter)

    req.refresh_from_db()
    assert (req.status, req.assigned_to, req.assigned_at) == ('cancelled', None, None)
    assert StatusHistory.objects.filter(request=req).count() == history
    assert TransporterStatus.objects.get(user=transporter).status == 'available'


def test_free_text_is_stored_unescaped(dispatcher):
    req = new_request(dispatcher, notes='O2 & IV <b>now</b>', destination='Lab & Imaging',
                      patient_initials='A&B')
    req = R.objects.get(pk=req.pk)
    assert req.notes == 'O2 & IV now'
    assert req.destination == 'Lab & Imaging'
    assert req.patient_initials == 'A&B'
