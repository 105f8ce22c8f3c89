"""Socket.IO room subscriptions for the broadcasts in grudge.services.realtime."""
import re

from flask import request
from flask_socketio import emit, join_room, leave_room
from grudge.app import db, socketio
from grudge.auth_utils import get_user_from_token
from grudge.models import Team
from grudge.services.common import get_membership
from grudge.services.realtime import GLOBAL_ROOM, user_room

_ROOM_PATTERN = re.compile(r'^(team|user)_(\d+)$')


def _authorize_socket_join(room, token):
    user = get_user_from_token(token)
    if not user:
        return None, 'Authentication required'

    if room in (GLOBAL_ROOM, user_room(user.id)):
        return user, None

    room_match = _ROOM_PATTERN.match(room)
    if not room_match:
        return None, 'Invalid room'
    if room_match.group(1) == 'user':
        return None, 'Forbidden room'

    team_id = int(room_match.group(2))
    if not db.session.get(Team, team_id):
        return None, 'Team not found'
    if not get_membership(team_id, user.id):
        return None, 'Forbidden room'
    return user, None


@socketio.on('join')
def on_join(data):
    payload = data if isinstance(data, dict) else {}
    room = str(payload.get('room') or '').strip()
    token = payload.get('token') or request.args.get('token') or ''
    _, error = _authorize_socket_join(room, token)
    if error:
        emit('status', {'error': error})
        return

    join_room(room)
    emit('status', {'message': f'Joined {room}'})


@socketio.on('leave')
def on_leave(data):
    payload = data if isinstance(data, dict) else {}
    room = str(payload.get('room') or '').strip()
    if room:
        leave_room(room)
