import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from dispatch.models import TransporterStatus, User
from dispatch.realtime.fanout import set_publisher


class RecordingPublisher:
    """Collects published events instead of sending them to the channel layer."""

    def __init__(self):
        self.events = []

    def publish(self, event, payload, scope=None):
        self.events.append((event, payload, scope))

    def names(self):
        return [e for e, _, _ in self.events]

    def of(self, event):
        return [p for e, p, _ in self.events if e == event]


@pytest.fixture(autouse=True)
def _clear_cache():
    # config, delay acks and throttles live in the locmem cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def events():
    recorder = RecordingPublisher()
    previous = set_publisher(recorder)
    yield recorder
    set_publisher(previous)


@pytest.fixture
def make_user(db):
    def _make(username, role='transporter', *, status=None, floor=None, password='P@ssw0rd1', **extra):
        user = User.objects.create_user(username=username, password=password, role=role,
                                        primary_floor=floor, **extra)
        if status is not None:
            TransporterStatus.objects.create(user=user, status=status)
        return user
    return _make


@pytest.fixture
def dispatcher(make_user):
    return make_user('disp1', 'dispatcher')


@pytest.fixture
def supervisor(make_user):
    return make_user('sup1', 'supervisor')


@pytest.fixture
def manager(make_user):
    return make_user('mgr1', 'manager')


@pytest.fixture
def transporter(make_user):
    return make_user('trans1', 'transporter', status=TransporterStatus.STATUS_AVAILABLE, floor='FCC1')


@pytest.fixture
def api():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return _client
