"""Tests for the JSON API routes."""
import pytest
from sqlalchemy.exc import OperationalError

from app import AUTH_COOKIE_NAME, create_app
from models import db
from utils import auth_token


def _add_squad(client):
    ids = []
    for name, position in [('Ana', 'Defense'), ('Bruno', 'Midfield'),
                           ('Carla', 'Attack'), ('Davi', 'Defense')]:
        resp = client.post('/api/players', json={'name': name, 'position': position})
        assert resp.status_code == 201
        ids.append(resp.get_json()['id'])
    return ids


def _add_match(client, **overrides):
    body = {'date': '2026-05-04', 'time': '19:00', 'price': 20, 'location': 'Arena', 'pitch': '2'}
    body.update(overrides)
    resp = client.post('/api/matches', json=body)
    assert resp.status_code == 201
    return resp.get_json()


def test_create_and_list_players(client):
    _add_squad(client)
    resp = client.get('/api/players')
    assert resp.status_code == 200
    players = resp.get_json()
    assert [p['name'] for p in players] == ['Ana', 'Bruno', 'Carla', 'Davi']
    assert players[0] == {'id': 1, 'name': 'Ana', 'position': 'Defense',
                          'points': 0, 'totalOwed': 0.0, 'paid': True}


@pytest.mark.parametrize('body, message', [
    ({'position': 'Attack'}, 'Name is required'),
    ({'name': '   ', 'position': 'Attack'}, 'Name is required'),
    ({'name': 7, 'position': 'Attack'}, 'Name is required'),
    ({'name': 'Eva'}, 'Position must be Attack, Midfield, or Defense'),
    ({'name': 'Eva', 'position': 'Keeper'}, 'Position must be Attack, Midfield, or Defense'),
])
def test_create_player_validation(client, body, message):
    resp = client.post('/api/players', json=body)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == message


def test_create_player_requires_json_object(client):
    resp = client.post('/api/players', data='not json', content_type='application/json')
    assert resp.status_code == 400


def test_duplicate_player_conflict(client):
    _add_squad(client)
    resp = client.post('/api/players', json={'name': 'Ana', 'position': 'Attack'})
    assert resp.status_code == 409
    assert 'UNIQUE' in resp.get_json()['error']


def test_update_and_get_player(client):
    _add_squad(client)
    resp = client.put('/api/players/2', json={'position': 'Attack'})
    assert resp.status_code == 200
    assert resp.get_json()['position'] == 'Attack'
    assert resp.get_json()['name'] == 'Bruno'

    resp = client.put('/api/players/2', json={'name': '  '})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Name must be a non-empty string'

    assert client.get('/api/players/2').get_json()['position'] == 'Attack'


def test_missing_records_are_404(client):
    assert client.get('/api/players/9').status_code == 404
    assert client.put('/api/players/9', json={'name': 'X'}).status_code == 404
    assert client.delete('/api/matches/9').status_code == 404
    resp = client.get('/api/players/abc')
    assert resp.status_code == 404
    assert 'error' in resp.get_json()


@pytest.mark.parametrize('body', [
    {'time': '19:00', 'price': 20},
    {'date': '2026-13-01', 'time': '19:00', 'price': 20},
    {'date': '2026-05-04', 'price': 20},
    {'date': '2026-05-04', 'time': '19:00', 'price': -5},
    {'date': '2026-05-04', 'time': '19:00', 'price': True},
    {'date': '2026-05-04', 'time': '19:00'},
])
def test_create_match_validation(client, body):
    assert client.post('/api/matches', json=body).status_code == 400


def test_create_match_defaults(client):
    match = _add_match(client, location=None, pitch=None, price=0)
    assert match['location'] == '' and match['pitch'] == ''
    assert match['price'] == 0.0
    assert (match['teamA'], match['teamB'], match['winner']) == ([], [], 'Not Played')


def test_full_match_flow(client):
    _add_squad(client)
    match = _add_match(client)
    mid = match['id']

    resp = client.put(f'/api/matches/{mid}/teams', json={'teamA': [1, 2], 'teamB': [3, 4]})
    assert resp.status_code == 200
    assert resp.get_json()['teamA'] == [1, 2]

    resp = client.put(f'/api/matches/{mid}/winner', json={'winner': 'Team A'})
    assert resp.status_code == 200
    assert resp.get_json()['winner'] == 'Team A'

    matrix = client.get('/api/payments').get_json()
    assert len(matrix['payments']) == 4
    assert all(p['amountOwed'] == 5.0 and not p['paid'] for p in matrix['payments'])

    resp = client.put(f'/api/payments/1/{mid}', json={'paid': True})
    assert resp.status_code == 200
    assert resp.get_json()['paid'] is True
    assert client.get('/api/players/1').get_json()['paid'] is True

    assert client.post('/api/payments/3/mark-all-paid').get_json() == {'success': True}
    assert client.get('/api/players/3').get_json()['totalOwed'] == 0.0

    board = client.get('/api/leaderboard').get_json()
    assert [row['points'] for row in board] == [3, 3, 1, 1]
    assert board[0]['form'] == ['W']

    resp = client.put(f'/api/matches/{mid}', json={'price': 40})
    assert resp.status_code == 200
    matrix = client.get('/api/payments').get_json()
    assert {p['amountOwed'] for p in matrix['payments']} == {10.0}

    assert client.delete(f'/api/matches/{mid}').get_json() == {'success': True}
    assert [p['points'] for p in client.get('/api/players').get_json()] == [0, 0, 0, 0]


def test_team_assignment_errors(client):
    _add_squad(client)
    mid = _add_match(client)['id']

    resp = client.put(f'/api/matches/{mid}/teams', json={'teamA': [1, 2], 'teamB': [2, 3]})
    assert resp.status_code == 409
    assert client.get(f'/api/matches/{mid}').get_json()['teamA'] == []

    resp = client.put(f'/api/matches/{mid}/teams', json={'teamA': [1], 'teamB': [55]})
    assert resp.status_code == 409

    resp = client.put(f'/api/matches/{mid}/teams', json={'teamA': '1,2', 'teamB': []})
    assert resp.status_code == 400

    resp = client.put('/api/matches/99/teams', json={'teamA': [1], 'teamB': [2]})
    assert resp.status_code == 404


def test_team_arrays_ignore_non_integer_ids(client):
    _add_squad(client)
    mid = _add_match(client)['id']
    resp = client.put(f'/api/matches/{mid}/teams', json={'teamA': [1, 'x', True], 'teamB': [2, None]})
    assert resp.status_code == 200
    assert (resp.get_json()['teamA'], resp.get_json()['teamB']) == ([1], [2])


def test_winner_validation(client):
    _add_squad(client)
    mid = _add_match(client)['id']

    resp = client.put(f'/api/matches/{mid}/winner', json={'winner': 'Draw'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Cannot set winner without teams assigned'

    resp = client.put(f'/api/matches/{mid}/winner', json={'winner': 'Team C'})
    assert resp.status_code == 400

    resp = client.put(f'/api/matches/{mid}/winner', json={'winner': 'Not Played'})
    assert resp.status_code == 200


def test_randomize_route(client):
    _add_squad(client)
    mid = _add_match(client)['id']

    resp = client.post(f'/api/matches/{mid}/randomize', json={'attendees': [1]})
    assert resp.status_code == 400

    resp = client.post(f'/api/matches/{mid}/randomize', json={'attendees': [1, 2, 3, 4], 'teamA': [1]})
    assert resp.status_code == 200
    match = resp.get_json()
    assert 1 in match['teamA']
    assert sorted(match['teamA'] + match['teamB']) == [1, 2, 3, 4]
    assert len(match['teamA']) == len(match['teamB'])

    resp = client.post('/api/matches/42/randomize', json={'attendees': [1, 2]})
    assert resp.status_code == 404


def test_payment_route_errors(client):
    _add_squad(client)
    mid = _add_match(client)['id']
    assert client.put(f'/api/payments/1/{mid}', json={'paid': 'yes'}).status_code == 400
    assert client.put(f'/api/payments/1/{mid}', json={'paid': True}).status_code == 404
    assert client.post('/api/payments/77/mark-all-paid').status_code == 404


def test_delete_player_route(client):
    _add_squad(client)
    mid = _add_match(client)['id']
    client.put(f'/api/matches/{mid}/teams', json={'teamA': [1, 2], 'teamB': [3, 4]})
    client.put(f'/api/matches/{mid}/winner', json={'winner': 'Draw'})

    assert client.delete('/api/players/2').status_code == 200

    match = client.get(f'/api/matches/{mid}').get_json()
    assert (match['teamA'], match['teamB']) == ([1], [3, 4])
    matrix = client.get('/api/payments').get_json()
    assert sorted(p['playerId'] for p in matrix['payments']) == [1, 3, 4]


def test_login_disabled_without_password(client):
    resp = client.post('/api/auth/login', json={'password': 'x'})
    assert resp.status_code == 500


@pytest.fixture
def locked_client():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'CLUB_PASSWORD': 'bombers',
        'CLUB_AUTH_SECRET': 's3cret',
    })
    return app.test_client()


def test_gate_blocks_without_credentials(locked_client):
    resp = locked_client.get('/api/players')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'Unauthorized'}


def test_leaderboard_is_public(locked_client):
    assert locked_client.get('/api/leaderboard').status_code == 200


def test_login_sets_cookie(locked_client):
    resp = locked_client.post('/api/auth/login', json={'password': 'wrong'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Incorrect password'

    resp = locked_client.post('/api/auth/login', json={'password': 'bombers'})
    assert resp.status_code == 200
    assert 'bombers_fc_auth=' in resp.headers['Set-Cookie']
    assert locked_client.get('/api/players').status_code == 200


def test_admin_token_header(locked_client):
    resp = locked_client.get('/api/players', headers={'X-Admin-Token': 'bombers'})
    assert resp.status_code == 200


def test_wrong_credentials_are_rejected(locked_client):
    assert locked_client.get('/api/players', headers={'X-Admin-Token': 'bomber'}).status_code == 401
    locked_client.set_cookie(AUTH_COOKIE_NAME, 'not-a-token')
    assert locked_client.get('/api/players').status_code == 401


def test_empty_auth_secret_is_used_as_is():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'CLUB_PASSWORD': 'bombers',
        'CLUB_AUTH_SECRET': '',
    })
    client = app.test_client()
    client.set_cookie(AUTH_COOKIE_NAME, auth_token('bombers', ''))
    assert client.get('/api/players').status_code == 200

    client.set_cookie(AUTH_COOKIE_NAME, auth_token('bombers', 'bombers'))
    assert client.get('/api/players').status_code == 401


def test_unset_auth_secret_falls_back_to_password():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'CLUB_PASSWORD': 'bombers',
        'CLUB_AUTH_SECRET': None,
    })
    client = app.test_client()
    resp = client.post('/api/auth/login', json={'password': 'bombers'})
    assert f"{AUTH_COOKIE_NAME}={auth_token('bombers', 'bombers')}" in resp.headers['Set-Cookie']


def test_store_failure_answers_500(client, monkeypatch):
    def broken_commit():
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db.session, 'commit', broken_commit)
    resp = client.post('/api/matches', json={'date': '2026-05-04', 'time': '19:00', 'price': 20})
    monkeypatch.undo()

    assert resp.status_code == 500
    assert resp.get_json() == {'error': 'Failed to save changes'}
    assert client.get('/api/matches').get_json() == []
