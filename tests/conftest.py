from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from grudge.app import create_app, db, socketio
from grudge.models import Notification
from grudge.time_utils import utcnow_naive


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register a user and return their id and auth headers."""
    def _register(username):
        res = client.post('/api/auth/register', json={
            'username': username, 'email': f'{username}@example.com',
            'password': 'password123', 'name': username.title(),
        })
        data = res.get_json()
        return {
            'id': data['user']['id'],
            'headers': {'Authorization': f"Bearer {data['token']}"},
        }
    return _register


@pytest.fixture
def auth_headers(register):
    return register('testuser')['headers']


@pytest.fixture
def create_team(client):
    def _create(admin, name='Rovers', sport='soccer', password=None):
        body = {'name': name, 'sport': sport}
        if password:
            body['password'] = password
        res = client.post('/api/teams', json=body, headers=admin['headers'])
        assert res.status_code == 201
        return res.get_json()['team']
    return _create


@pytest.fixture
def join_team(client):
    """Have ``user`` request to join ``team`` and ``admin`` approve it."""
    def _join(team, admin, user, password=None):
        res = client.post('/api/teams/join', json={
            'invite_code': team['invite_code'], 'password': password,
        }, headers=user['headers'])
        assert res.status_code == 201
        request_id = res.get_json()['request']['id']
        res = client.post(
            f"/api/teams/{team['id']}/join-requests/{request_id}",
            json={'approve': True}, headers=admin['headers'],
        )
        assert res.status_code == 200
    return _join


@pytest.fixture
def league_setup(client, register, create_team):
    """A soccer league with two approved teams and one match played yesterday."""
    manager = register('manager')
    home = register('homeadmin')
    away = register('awayadmin')
    league = client.post('/api/leagues', json={
        'name': 'Sunday League', 'sport': 'soccer',
    }, headers=manager['headers']).get_json()['league']

    teams = {}
    for key, admin in (('home', home), ('away', away)):
        team = create_team(admin, name=f'{key.title()} FC')
        res = client.post('/api/leagues/join', json={
            'invite_code': league['invite_code'], 'team_id': team['id'],
        }, headers=admin['headers'])
        assert res.status_code == 201
        request_id = res.get_json()['request']['id']
        res = client.post(
            f"/api/leagues/{league['id']}/join-requests/{request_id}",
            json={'approve': True}, headers=manager['headers'],
        )
        assert res.status_code == 200
        teams[key] = team

    res = client.post(f"/api/leagues/{league['id']}/matches", json={
        'home_team_id': teams['home']['id'],
        'away_team_id': teams['away']['id'],
        'scheduled_at': (utcnow_naive() - timedelta(days=1)).isoformat(),
        'location': 'Field 3',
    }, headers=manager['headers'])
    assert res.status_code == 201

    return {
        'manager': manager, 'home': home, 'away': away,
        'league': league,
        'home_team': teams['home'], 'away_team': teams['away'],
        'match': res.get_json()['match'],
    }


@pytest.fixture
def emitted(monkeypatch):
    """Capture Socket.IO broadcasts as (event, payload, room) tuples."""
    captured = []

    def _fake_emit(event, data=None, to=None, **kwargs):
        captured.append((event, data, to))

    monkeypatch.setattr(socketio, 'emit', _fake_emit)
    return captured


@pytest.fixture
def lock_notifications(monkeypatch):
    """Return a callable that makes every Notification query fail like a locked table."""
    class _LockedQuery:
        def _fail(self, *args, **kwargs):
            raise OperationalError('SELECT notification', {}, Exception('database is locked'))

        filter = filter_by = _fail

    def _lock():
        monkeypatch.setattr(Notification, 'query', _LockedQuery())
    return _lock
