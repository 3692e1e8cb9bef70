import pytest

from map_relay import create_app

DM_PASSWORD = 'test-dm-secret'


@pytest.fixture()
def app(tmp_path):
    """App backed by a throwaway SQLite record store."""
    app = create_app({
        'TESTING': True,
        'DM_PASSWORD': DM_PASSWORD,
        'RECORD_STORE_PATH': str(tmp_path / 'relay.db'),
        'PERSISTENCE_ENABLED': True,
        'MAP_IMAGE_PATH': str(tmp_path / 'map.png'),
    })
    yield app
    app.extensions['map_relay']['mirror'].shutdown()


@pytest.fixture()
def relay(app):
    return app.extensions['map_relay']


@pytest.fixture()
def socketio(app):
    return app.extensions['socketio']


@pytest.fixture()
def connect(app, socketio):
    """Factory for test clients, optionally authenticated. Received events are cleared."""
    clients = []

    def _connect(role=None, password=DM_PASSWORD):
        client = socketio.test_client(app)
        clients.append(client)
        if role is not None:
            client.emit('authenticate', {'role': role, 'password': password})
        client.get_received()
        return client

    yield _connect
    for client in clients:
        if client.is_connected():
            client.disconnect()


def received(client, name=None):
    """Drain a client's queue as (event, payload) pairs, optionally only one event name."""
    events = []
    for message in client.get_received():
        payload = message['args'][0] if message['args'] else None
        if name is None or message['name'] == name:
            events.append((message['name'], payload))
    return events


def payloads(client, name):
    return [payload for _, payload in received(client, name)]
