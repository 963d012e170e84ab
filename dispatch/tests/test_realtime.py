import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from dispatch.models import TransportRequest, TransporterStatus
from dispatch.realtime import fanout
from dispatch.realtime.fanout import ChannelLayerPublisher, group_for, publish_on_commit, set_publisher
from dispatch.realtime.consumers import ROOM_RE
from dispatch.services import lifecycle
from dispatch.services.auto_assign import AutoAssignMatcher


@pytest.fixture
def layer(settings):
    settings.CHANNEL_LAYERS = {'default': {'BACKEND': 'channels.layers.InMemoryChannelLayer'}}
    return get_channel_layer()


def test_group_names():
    assert group_for(None) == 'dispatch'
    assert group_for('floor.FCC5') == 'dispatch.floor.FCC5'


def test_publisher_sends_to_group(layer):
    channel = async_to_sync(layer.new_channel)()
    async_to_sync(layer.group_add)('dispatch.floor.FCC5', channel)

    ChannelLayerPublisher().publish('request_created', {'id': 7}, scope='floor.FCC5')

    message = async_to_sync(layer.receive)(channel)
    assert message == {'type': 'dispatch.event', 'event': 'request_created', 'payload': {'id': 7}}


@pytest.mark.django_db(transaction=True)
def test_publish_on_commit_waits_for_commit(events):
    with transaction.atomic():
        publish_on_commit('shift_started', {'userId': 1})
        assert events.events == []
    assert events.names() == ['shift_started']


@pytest.mark.parametrize('room,ok', [
    ('dispatch_board', True),
    ('transporters', True),
    ('floor.FCC1', True),
    ('floor.FCC2', False),
    ('dispatch', False),
])
def test_subscribable_rooms(room, ok):
    assert bool(ROOM_RE.match(room)) is ok


class BrokenLayer:
    """A channel layer whose backend has gone away."""

    def __init__(self):
        self.calls = 0

    async def group_send(self, group, message):
        self.calls += 1
        raise ConnectionError('redis unreachable')


@pytest.fixture
def broken_layer(monkeypatch):
    layer = BrokenLayer()
    monkeypatch.setattr(fanout, 'get_channel_layer', lambda: layer)
    return layer


def test_backend_failure_is_logged_not_raised(broken_layer, caplog):
    ChannelLayerPublisher().publish('request_created', {'id': 7})
    assert broken_layer.calls == 1
    assert 'Could not publish request_created event to dispatch' in caplog.text


@pytest.mark.django_db(transaction=True)
def test_writes_survive_a_failing_channel_layer(broken_layer, dispatcher, make_user):
    previous = set_publisher(ChannelLayerPublisher())
    try:
        first = lifecycle.create_request(dispatcher, {'origin_floor': 'FCC5', 'room_number': '510'})
        second = lifecycle.create_request(dispatcher, {'origin_floor': 'FCC5', 'room_number': '511'})
        crew = [make_user(name, status=TransporterStatus.STATUS_AVAILABLE) for name in ('a', 'b')]

        result = AutoAssignMatcher().sweep()
    finally:
        set_publisher(previous)

    assert result.count == 2
    assert broken_layer.calls >= 4
    assigned = TransportRequest.objects.filter(pk__in=[first.pk, second.pk], status='assigned')
    assert set(assigned.values_list('assigned_to', flat=True)) == {u.pk for u in crew}
