import pytest
from django.conf import settings
from django.urls import reverse
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from dispatch.models import AuditEvent, User

pytestmark = pytest.mark.django_db


def login(client, username, password):
    return client.post(reverse('login_view'), {'username': username, 'password': password}, format='json')


def test_login_sets_httponly_cookie_and_me_works():
    client = APIClient()
    User.objects.create_user(username='u1', password='P@ssw0rd1', role='dispatcher')
    r = login(client, 'u1', 'P@ssw0rd1')
    assert r.status_code == 200
    assert r.data['user']['role'] == 'dispatcher'
    cookie = r.cookies[settings.AUTH_COOKIE_NAME]
    assert cookie['httponly']
    assert cookie['max-age'] == settings.AUTH_TOKEN_HOURS * 3600
    # the token never appears in the body
    assert 'token' not in r.data
    me = client.get(reverse('me_view'))
    assert me.status_code == 200
    assert me.data['user']['username'] == 'u1'


def test_login_by_email():
    client = APIClient()
    User.objects.create_user(username='u2', email='u2@example.org', password='P@ssw0rd1')
    assert login(client, 'U2@example.org', 'P@ssw0rd1').status_code == 200


def test_no_role_escalation_through_login():
    client = APIClient()
    u = User.objects.create_user(username='u3', password='P@ssw0rd1', role='transporter')
    r = client.post(reverse('login_view'), {'username': 'u3', 'password': 'P@ssw0rd1', 'role': 'manager'}, format='json')
    assert r.status_code == 200
    u.refresh_from_db()
    assert u.role == 'transporter'
    assert r.data['user']['role'] == 'transporter'


def test_bad_password_is_rejected_and_audited():
    client = APIClient()
    User.objects.create_user(username='u4', password='P@ssw0rd1')
    r = login(client, 'u4', 'wrong')
    assert r.status_code == 401
    assert r.data['ok'] is False
    assert settings.AUTH_COOKIE_NAME not in r.cookies
    assert AuditEvent.objects.filter(action='login', detail__result='fail').count() == 1


def test_inactive_user_cannot_log_in():
    client = APIClient()
    User.objects.create_user(username='u5', password='P@ssw0rd1', is_active=False)
    assert login(client, 'u5', 'P@ssw0rd1').status_code == 401


def test_token_of_deactivated_user_is_refused():
    client = APIClient()
    u = User.objects.create_user(username='u6', password='P@ssw0rd1')
    login(client, 'u6', 'P@ssw0rd1')
    User.objects.filter(pk=u.pk).update(is_active=False)
    assert client.get(reverse('me_view')).status_code == 401


def test_garbage_cookie_is_401():
    client = APIClient()
    client.cookies[settings.AUTH_COOKIE_NAME] = 'not-a-jwt'
    r = client.get(reverse('me_view'))
    assert r.status_code == 401
    assert r.data['ok'] is False


def test_stale_cookie_does_not_block_login():
    client = APIClient()
    User.objects.create_user(username='u7', password='P@ssw0rd1')
    client.cookies[settings.AUTH_COOKIE_NAME] = 'expired-or-garbage'
    assert login(client, 'u7', 'P@ssw0rd1').status_code == 200


def test_bearer_header_fallback():
    client = APIClient()
    u = User.objects.create_user(username='u8', password='P@ssw0rd1')
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {AccessToken.for_user(u)}')
    assert client.get(reverse('me_view')).status_code == 200


def test_logout_clears_cookie():
    client = APIClient()
    User.objects.create_user(username='u9', password='P@ssw0rd1')
    login(client, 'u9', 'P@ssw0rd1')
    r = client.post(reverse('logout_view'))
    assert r.status_code == 200
    assert r.cookies[settings.AUTH_COOKIE_NAME].value == ''
    assert client.get(reverse('me_view')).status_code == 401
