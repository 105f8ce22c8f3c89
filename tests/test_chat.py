"""Tests for team chat and Socket.IO room authorization."""
import pytest

from grudge.auth_utils import generate_token
from grudge.models import Notification
from grudge.routes.realtime import _authorize_socket_join


@pytest.fixture
def crew(register, create_team, join_team):
    admin = register('skip')
    team = create_team(admin, name='Chatters')
    mate = register('mate')
    join_team(team, admin, mate)
    return {'admin': admin, 'mate': mate, 'team': team}


def _post(client, crew, user, content):
    return client.post(f"/api/teams/{crew['team']['id']}/chat", json={'content': content},
                       headers=user['headers'])


def test_team_chat_is_members_only(client, crew, register):
    outsider = register('lurker')
    assert _post(client, crew, outsider, 'hello?').status_code == 403
    res = client.get(f"/api/teams/{crew['team']['id']}/chat", headers=outsider['headers'])
    assert res.status_code == 403


def test_posting_notifies_other_members_and_broadcasts(client, crew, emitted):
    res = _post(client, crew, crew['admin'], '  Training moved to 7pm  ')
    assert res.status_code == 201
    assert res.get_json()['message']['content'] == 'Training moved to 7pm'

    notes = Notification.query.filter_by(notif_type='chat.message').all()
    assert [n.user_id for n in notes] == [crew['mate']['id']]
    assert notes[0].team_id == crew['team']['id']
    assert notes[0].data['preview'] == 'Training moved to 7pm'

    room = f"team_{crew['team']['id']}"
    assert ('chat_message', room) in [(event, to) for event, _, to in emitted]


def test_empty_message_is_invalid(client, crew):
    assert _post(client, crew, crew['mate'], '   ').status_code == 400


def test_history_is_oldest_first_and_limited(app, client, crew):
    app.config['CHAT_HISTORY_LIMIT'] = 2
    for text in ('one', 'two', 'three'):
        _post(client, crew, crew['mate'], text)
    res = client.get(f"/api/teams/{crew['team']['id']}/chat", headers=crew['admin']['headers'])
    assert [m['content'] for m in res.get_json()['messages']] == ['two', 'three']


def test_mark_chat_read_is_team_scoped(client, crew, create_team):
    _post(client, crew, crew['mate'], 'first')
    _post(client, crew, crew['mate'], 'second')
    res = client.post('/api/notifications/mark-chat-read', json={'team_id': crew['team']['id']},
                      headers=crew['admin']['headers'])
    assert res.get_json()['updated'] == 2

    res = client.post('/api/notifications/mark-chat-read', json={},
                      headers=crew['admin']['headers'])
    assert res.status_code == 400


def test_socket_join_authorization(app, crew, register):
    team_id = crew['team']['id']
    mate_token = generate_token(crew['mate']['id'])
    outsider_token = generate_token(register('eavesdropper')['id'])

    assert _authorize_socket_join(f'team_{team_id}', '')[1] == 'Authentication required'
    assert _authorize_socket_join('global', outsider_token)[1] is None
    assert _authorize_socket_join(f'team_{team_id}', mate_token)[1] is None
    assert _authorize_socket_join(f'team_{team_id}', f'Bearer {outsider_token}')[1] == 'Forbidden room'
    assert _authorize_socket_join('team_99999', mate_token)[1] == 'Team not found'
    assert _authorize_socket_join(f"user_{crew['mate']['id']}", mate_token)[1] is None
    assert _authorize_socket_join(f"user_{crew['admin']['id']}", mate_token)[1] == 'Forbidden room'
    assert _authorize_socket_join('court_1', mate_token)[1] == 'Invalid room'
