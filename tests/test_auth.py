"""Tests for authentication routes."""
import json

from grudge.app import db
from grudge.auth_utils import generate_token
from grudge.models import User


def test_register(client):
    res = client.post('/api/auth/register', json={
        'username': 'testuser', 'email': 'test@test.com',
        'password': 'password123', 'name': 'Test User',
    })
    assert res.status_code == 201
    data = json.loads(res.data)
    assert 'token' in data
    assert data['user']['username'] == 'testuser'
    assert data['user']['is_admin'] is False


def test_register_missing_fields(client):
    res = client.post('/api/auth/register', json={'username': 'x'})
    assert res.status_code == 400
    assert res.get_json()['kind'] == 'invalid'


def test_register_duplicate_username(client):
    client.post('/api/auth/register', json={
        'username': 'dup', 'email': 'dup@test.com', 'password': 'password123',
    })
    res = client.post('/api/auth/register', json={
        'username': 'dup', 'email': 'dup2@test.com', 'password': 'password123',
    })
    assert res.status_code == 409
    assert res.get_json()['kind'] == 'conflict'


def test_register_rejects_weak_password(client):
    res = client.post('/api/auth/register', json={
        'username': 'weakpw',
        'email': 'weakpw@test.com',
        'password': 'abcdefg',
    })
    assert res.status_code == 400
    assert 'Password must' in json.loads(res.data)['error']


def test_register_grants_site_admin_for_configured_email(app, client):
    app.config['ADMIN_EMAILS'] = 'Boss@Example.com, other@example.com'
    res = client.post('/api/auth/register', json={
        'username': 'boss', 'email': 'boss@example.com', 'password': 'password123',
    })
    assert res.status_code == 201
    assert res.get_json()['user']['is_admin'] is True


def test_login(client):
    client.post('/api/auth/register', json={
        'username': 'loginuser', 'email': 'login@test.com', 'password': 'password123',
    })
    res = client.post('/api/auth/login', json={
        'email': 'LOGIN@test.com', 'password': 'password123',
    })
    assert res.status_code == 200
    assert 'token' in json.loads(res.data)


def test_login_bad_password(client):
    client.post('/api/auth/register', json={
        'username': 'badpw', 'email': 'bad@test.com', 'password': 'password123',
    })
    res = client.post('/api/auth/login', json={
        'email': 'bad@test.com', 'password': 'wrong',
    })
    assert res.status_code == 401
    assert res.get_json()['kind'] == 'unauthorized'


def test_login_promotes_configured_admin(app, client):
    client.post('/api/auth/register', json={
        'username': 'later', 'email': 'later@test.com', 'password': 'password123',
    })
    app.config['ADMIN_EMAILS'] = 'later@test.com'
    res = client.post('/api/auth/login', json={
        'email': 'later@test.com', 'password': 'password123',
    })
    assert res.status_code == 200
    assert res.get_json()['user']['is_admin'] is True
    assert User.query.filter_by(email='later@test.com').first().is_admin is True


def test_profile_requires_token(client):
    res = client.get('/api/auth/profile')
    assert res.status_code == 401
    assert res.get_json() == {'error': 'Authentication required', 'kind': 'unauthorized'}


def test_profile_rejects_garbage_token(client):
    res = client.get('/api/auth/profile', headers={'Authorization': 'Bearer not-a-jwt'})
    assert res.status_code == 401
    assert res.get_json()['error'] == 'Invalid token'


def test_profile_lists_memberships_and_managed_leagues(client, register, create_team):
    user = register('captain')
    team = create_team(user, name='Strikers')
    league = client.post('/api/leagues', json={
        'name': 'Weeknight', 'sport': 'soccer',
    }, headers=user['headers']).get_json()['league']

    res = client.get('/api/auth/profile', headers=user['headers'])
    assert res.status_code == 200
    profile = res.get_json()['user']
    assert profile['teams'] == [{
        'team_id': team['id'], 'team_name': 'Strikers', 'role': 'ADMIN', 'is_admin': True,
    }]
    assert profile['managed_league_ids'] == [league['id']]
    assert profile['league_ids'] == [league['id']]


def test_update_profile_name(client, auth_headers):
    res = client.put('/api/auth/profile', json={'name': '  New Name  '}, headers=auth_headers)
    assert res.status_code == 200
    assert res.get_json()['user']['name'] == 'New Name'


def test_token_for_deleted_user_is_rejected(client, register):
    user = register('ghost')
    db.session.delete(db.session.get(User, user['id']))
    db.session.commit()
    res = client.get('/api/auth/profile', headers=user['headers'])
    assert res.status_code == 401
    assert res.get_json()['error'] == 'User not found'


def test_expired_token_is_rejected(app, client, register):
    user = register('sleepy')
    app.config['JWT_EXPIRATION_HOURS'] = -1
    token = generate_token(user['id'])
    res = client.get('/api/auth/profile', headers={'Authorization': f'bearer {token}'})
    assert res.status_code == 401
    assert res.get_json() == {'error': 'Token expired', 'kind': 'unauthorized'}


def test_site_admin_routes_reject_regular_users(client, auth_headers):
    res = client.post('/api/admin/fix-role-consistency', headers=auth_headers)
    assert res.status_code == 403
    assert res.get_json() == {'error': 'Admin access required', 'kind': 'forbidden'}
