"""Outbound realtime broadcasts.

Services queue events on the database session; they go out through
Socket.IO only after that session commits, and are dropped on rollback.
Delivery is best-effort.
"""
import logging

from flask import current_app, has_app_context
from sqlalchemy import event
from sqlalchemy.orm import Session
from grudge.app import db, socketio
from grudge.time_utils import utcnow_naive

logger = logging.getLogger(__name__)

GLOBAL_ROOM = 'global'
_PENDING_KEY = 'pending_broadcasts'


def team_room(team_id):
    return f'team_{team_id}'


def user_room(user_id):
    return f'user_{user_id}'


def room_for(team_id):
    return team_room(team_id) if team_id else GLOBAL_ROOM


def _queue(room, event_name, payload):
    db.session.info.setdefault(_PENDING_KEY, []).append((room, event_name, dict(payload or {})))


def queue_broadcast(team_id, event_name, payload=None):
    _queue(room_for(team_id), event_name, payload)


def queue_user_broadcast(user_id, event_name, payload=None):
    _queue(user_room(user_id), event_name, payload)


def _broadcast_enabled():
    if not has_app_context():
        return True
    return bool(current_app.config.get('BROADCAST_ENABLED', True))


def deliver(room, event_name, payload):
    """Push one event to a room. Returns False when the push failed."""
    if not _broadcast_enabled():
        return False
    data = dict(payload)
    data.setdefault('updated_at', utcnow_naive().isoformat())
    try:
        socketio.emit(event_name, data, to=room)
    except Exception:
        logger.warning('Broadcast of %s to %s failed', event_name, room, exc_info=True)
        return False
    return True


@event.listens_for(Session, 'after_commit')
def _deliver_after_commit(session):
    pending = session.info.pop(_PENDING_KEY, None)
    for room, event_name, payload in pending or ():
        deliver(room, event_name, payload)


@event.listens_for(Session, 'after_soft_rollback')
def _discard_after_rollback(session, previous_transaction):
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        logger.debug('Dropped %d broadcasts from a rolled back transaction', len(dropped))
