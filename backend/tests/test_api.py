import conftest
from divine_wrath import create_app, engine


def test_health(client):
    res = client.get('/')
    assert res.status_code == 200
    data = res.get_json()
    assert data['status'] == 'ok'
    assert data['blockchain'] == {
        'enabled': False,
        'relayerConfigured': False,
        'relayerUrl': None,
        'contractId': None,
    }
    assert data['rooms'] == 0


def test_health_reports_relayer():
    class RelayerConfig(conftest.TestConfig):
        USE_BLOCKCHAIN = True
        RELAYER_URL = 'http://relayer.local/'
        DIVINE_WRATH_CONTRACT_ID = 'CDW123'

    app = create_app(RelayerConfig)
    data = app.test_client().get('/').get_json()
    assert data['blockchain'] == {
        'enabled': True,
        'relayerConfigured': True,
        'relayerUrl': 'http://relayer.local',
        'contractId': 'CDW123',
    }


def test_list_rooms(client):
    assert client.get('/api/rooms').get_json() == {'count': 0, 'rooms': []}
    engine.controller.create_room('sid-1', 'Ana', code='ABC123')
    assert client.get('/api/rooms').get_json() == {'count': 1, 'rooms': ['ABC123']}


def test_room_state(client):
    engine.controller.create_room('sid-1', 'Ana', code='ABC123')
    res = client.get('/api/rooms/abc123/state')
    assert res.status_code == 200
    data = res.get_json()
    assert data['code'] == 'ABC123'
    assert data['phase'] == 'lobby'
    assert [p['name'] for p in data['players']] == ['Ana']


def test_room_state_not_found(client):
    res = client.get('/api/rooms/NOPE99/state')
    assert res.status_code == 404
    assert res.get_json() == {'error': 'Room not found'}


def test_relayer_status_command(flask_app):
    result = flask_app.test_cli_runner().invoke(args=['relayer-status'])
    assert result.exit_code == 0
    assert 'blockchain enabled: False' in result.output
    assert 'relayer configured: False' in result.output
