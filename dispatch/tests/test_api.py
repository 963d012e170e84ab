"""
Integration tests for the dispatch HTTP API.

These exercise the endpoints end to end through DRF's ``APIClient``:
role enforcement, the error envelope, request creation and status
updates, claims, auto-assignment and runtime configuration.
"""

import pytest
from django.urls import reverse
from rest_framework.test import APITestCase

from dispatch.models import StatusHistory, SystemConfig, TransportRequest, TransporterStatus, User

pytestmark = pytest.mark.django_db


class TransportRequestAPITests(APITestCase):
    def setUp(self) -> None:
        self.dispatcher = User.objects.create_user(username='disp', password='P@ssw0rd1', role='dispatcher')
        self.crew1 = User.objects.create_user(username='crew1', password='P@ssw0rd1', role='transporter')
        self.crew2 = User.objects.create_user(username='crew2', password='P@ssw0rd1', role='transporter')
        for u in (self.crew1, self.crew2):
            TransporterStatus.objects.create(user=u, status='available')

    def as_user(self, user):
        self.client.force_authenticate(user=user)

    def create(self, **overrides):
        body = {'origin_floor': 'FCC5', 'room_number': '505', 'priority': 'routine'}
        body.update(overrides)
        self.as_user(self.dispatcher)
        return self.client.post(reverse('requests_list'), body, format='json')

    def test_unauthenticated_gets_401_envelope(self):
        r = self.client.get(reverse('requests_list'))
        self.assertEqual(r.status_code, 401)
        self.assertFalse(r.data['ok'])
        self.assertEqual(r.data['error']['code'], 'not_authenticated')

    def test_dispatcher_creates_request(self):
        r = self.create(special_needs=['iv_pump'], notes='bed 2')
        self.assertEqual(r.status_code, 201)
        data = r.data['data']
        self.assertEqual(data['status'], 'pending')
        self.assertEqual(data['roomNumber'], '505')
        self.assertEqual(data['specialNeeds'], ['iv_pump'])
        self.assertEqual(data['createdBy']['id'], self.dispatcher.id)

    def test_free_text_comes_back_as_plain_text(self):
        r = self.create(notes='O2 & IV <b>now</b>', patient_initials='A&B', destination='Lab & Imaging')
        self.assertEqual(r.status_code, 201)
        data = r.data['data']
        self.assertEqual(data['notes'], 'O2 & IV now')
        self.assertEqual(data['patientInitials'], 'A&B')
        self.assertEqual(data['destination'], 'Lab & Imaging')

    def test_room_outside_floor_is_rejected(self):
        r = self.create(room_number='150')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['code'], 'invalid')
        self.assertFalse(TransportRequest.objects.exists())

    def test_transporter_cannot_create(self):
        self.as_user(self.crew1)
        r = self.client.post(reverse('requests_list'), {'origin_floor': 'FCC5', 'room_number': '505'}, format='json')
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.data['error']['code'], 'permission_denied')

    def test_create_with_manual_assignment(self):
        r = self.create(assigned_to=self.crew2.id)
        self.assertEqual(r.status_code, 201)
        self.assertEqual(r.data['data']['status'], 'assigned')
        self.assertEqual(r.data['data']['assignedTo']['id'], self.crew2.id)

    def test_claim_conflict_returns_409(self):
        req_id = self.create().data['data']['id']
        self.as_user(self.crew1)
        r1 = self.client.put(reverse('request_claim', args=[req_id]))
        self.assertEqual(r1.status_code, 200)
        self.as_user(self.crew2)
        r2 = self.client.put(reverse('request_claim', args=[req_id]))
        self.assertEqual(r2.status_code, 409)
        self.assertEqual(r2.data['error']['code'], 'conflict')
        self.assertEqual(TransportRequest.objects.get(pk=req_id).assigned_to, self.crew1)

    def test_transporter_walks_job_to_complete(self):
        req_id = self.create(assigned_to=self.crew1.id).data['data']['id']
        self.as_user(self.crew1)
        url = reverse('request_detail', args=[req_id])
        for target in ('accepted', 'en_route', 'with_patient', 'complete'):
            r = self.client.put(url, {'status': target}, format='json')
            self.assertEqual(r.status_code, 200, r.data)
            self.assertEqual(r.data['data']['status'], target)
        detail = self.client.get(url).data['data']
        self.assertEqual([h['toStatus'] for h in detail['history']],
                         ['pending', 'assigned', 'accepted', 'en_route', 'with_patient', 'complete'])

    def test_skipping_a_step_is_invalid(self):
        req_id = self.create(assigned_to=self.crew1.id).data['data']['id']
        self.as_user(self.crew1)
        r = self.client.put(reverse('request_detail', args=[req_id]), {'status': 'complete'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['error']['code'], 'invalid_transition')
        self.assertEqual(TransportRequest.objects.get(pk=req_id).status, 'assigned')

    def test_assign_then_reassign_through_update(self):
        req_id = self.create().data['data']['id']
        url = reverse('request_detail', args=[req_id])
        r = self.client.put(url, {'assigned_to': self.crew1.id}, format='json')
        self.assertEqual(r.data['data']['assignedTo']['id'], self.crew1.id)
        r = self.client.put(url, {'assigned_to': self.crew2.id}, format='json')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['data']['assignedTo']['id'], self.crew2.id)
        self.assertEqual(StatusHistory.objects.filter(request_id=req_id).count(), 2)

    def test_cancel_requires_dispatcher(self):
        req_id = self.create(assigned_to=self.crew1.id).data['data']['id']
        self.as_user(self.crew1)
        self.assertEqual(self.client.put(reverse('request_cancel', args=[req_id])).status_code, 403)
        self.as_user(self.dispatcher)
        r = self.client.put(reverse('request_cancel', args=[req_id]))
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['data']['status'], 'cancelled')
        self.assertEqual(TransporterStatus.objects.get(user=self.crew1).status, 'available')

    def test_list_hides_finished_requests_by_default(self):
        open_id = self.create().data['data']['id']
        done_id = self.create(room_number='506').data['data']['id']
        self.client.put(reverse('request_cancel', args=[done_id]))
        ids = [r['id'] for r in self.client.get(reverse('requests_list')).data['data']]
        self.assertEqual(ids, [open_id])
        ids = [r['id'] for r in self.client.get(reverse('requests_list'), {'include_complete': 'true'}).data['data']]
        self.assertEqual(sorted(ids), sorted([open_id, done_id]))
        ids = [r['id'] for r in self.client.get(reverse('requests_list'), {'floor': 'FCC1'}).data['data']]
        self.assertEqual(ids, [])

    def test_auto_assign_endpoint(self):
        req_id = self.create().data['data']['id']
        r = self.client.post(reverse('request_auto_assign', args=[req_id]))
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['data']['status'], 'assigned')
        self.assertEqual(r.data['data']['assignmentMethod'], 'auto')
        again = self.client.post(reverse('request_auto_assign', args=[req_id]))
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data['error']['code'], 'invalid_transition')

    def test_auto_assign_without_transporters(self):
        TransporterStatus.objects.update(status='on_break')
        req_id = self.create().data['data']['id']
        r = self.client.post(reverse('request_auto_assign', args=[req_id]))
        self.assertEqual(r.status_code, 400)
        self.assertEqual(TransportRequest.objects.get(pk=req_id).status, 'pending')

    def test_missing_request_is_404(self):
        self.as_user(self.dispatcher)
        r = self.client.get(reverse('request_detail', args=[424242]))
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.data['error']['code'], 'not_found')


def test_status_board_and_own_update(api, transporter, dispatcher):
    client = api(transporter)
    r = client.put(reverse('status_board'), {'status': 'on_break', 'explanation': 'lunch'}, format='json')
    assert r.status_code == 200
    assert r.data['data']['status'] == 'on_break'
    assert r.data['data']['onBreakSince']
    board = api(dispatcher).get(reverse('status_board')).data['data']
    assert [s['status'] for s in board if s['userId'] == transporter.id] == ['on_break']


def test_job_status_cannot_be_self_set(api, transporter):
    r = api(transporter).put(reverse('status_board'), {'status': 'with_patient'}, format='json')
    assert r.status_code == 400


def test_status_override_requires_supervisor(api, transporter, dispatcher, supervisor):
    url = reverse('status_override', args=[transporter.id])
    assert api(dispatcher).put(url, {'status': 'offline'}, format='json').status_code == 403
    r = api(supervisor).put(url, {'status': 'off_unit', 'explanation': 'covering ED'}, format='json')
    assert r.status_code == 200
    assert TransporterStatus.objects.get(user=transporter).status == 'off_unit'


def test_heartbeat_endpoint(api, transporter):
    r = api(transporter).post(reverse('heartbeat'))
    assert r.status_code == 200
    assert transporter.heartbeat.last_heartbeat is not None


def test_config_write_broadcasts_alert_settings(api, manager, supervisor, events, django_capture_on_commit_callbacks):
    url = reverse('config_detail', args=['alert_settings'])
    body = {'value': {'master_enabled': True, 'alerts': {'break_alert': False}}}
    assert api(supervisor).put(url, body, format='json').status_code == 403
    with django_capture_on_commit_callbacks(execute=True):
        r = api(manager).put(url, body, format='json')
    assert r.status_code == 200
    assert SystemConfig.objects.get(key='alert_settings').value == body['value']
    changed = events.of('alert_settings_changed')
    assert len(changed) == 1
    assert changed[0]['alerts']['break_alert'] is False
    assert changed[0]['alerts']['pending_timeout'] is True

    assert api(supervisor).get(url).data['data']['value'] == body['value']
    assert 'alert_settings' in api(supervisor).get(reverse('config_list')).data['data']


def test_config_delete_and_missing_key(api, manager):
    client = api(manager)
    client.put(reverse('config_detail', args=['auto_assign_enabled']), {'value': False}, format='json')
    assert client.delete(reverse('config_detail', args=['auto_assign_enabled'])).status_code == 200
    assert client.get(reverse('config_detail', args=['auto_assign_enabled'])).status_code == 404
    assert client.delete(reverse('config_detail', args=['auto_assign_enabled'])).status_code == 404


def test_config_requires_value(api, manager):
    r = api(manager).put(reverse('config_detail', args=['auto_assign_enabled']), {}, format='json')
    assert r.status_code == 400


def test_manager_manages_users(api, manager, dispatcher):
    client = api(manager)
    r = client.post(reverse('users_list'), {
        'username': 'newbie', 'password': 'Sup3rSecret!', 'role': 'transporter', 'primary_floor': 'FCC6',
    }, format='json')
    assert r.status_code == 201
    uid = r.data['data']['id']
    assert TransporterStatus.objects.filter(user_id=uid).exists()
    r = client.put(reverse('user_update', args=[uid]), {'is_active': False}, format='json')
    assert r.data['data']['isActive'] is False
    dup = client.post(reverse('users_list'), {'username': 'NEWBIE', 'password': 'Sup3rSecret!'}, format='json')
    assert dup.status_code == 400
    assert api(dispatcher).get(reverse('users_list')).status_code == 403


def test_healthz(client):
    r = client.get('/healthz')
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'db': True}
