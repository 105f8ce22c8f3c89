"""Notification creation and retirement.

Notifications are written after the state change they describe has been
committed, so a failure here never undoes that change. Obsolete
notifications are never deleted by the system; they are marked read.
"""
import json
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from grudge.app import db
from grudge.errors import NotFound
from grudge.models import (
    Assignment, LeagueJoinRequest, Notification, ScoreSubmission, SeasonMatch,
    TeamJoinRequest, PENDING,
)
from grudge.services.realtime import queue_user_broadcast
from grudge.time_utils import utcnow_naive, parse_iso_datetime

logger = logging.getLogger(__name__)

ASSIGNMENT_PENDING = 'ASSIGNMENT_PENDING'
ASSIGNMENT_REMOVED = 'ASSIGNMENT_REMOVED'
PLAYER_REMOVED_SELF = 'PLAYER_REMOVED_SELF'
CHAT_MESSAGE = 'chat.message'
ROLE_UPDATED = 'ROLE_UPDATED'
ADMIN_DEMOTED = 'ADMIN_DEMOTED'
ADMIN_RELINQUISHED = 'ADMIN_RELINQUISHED'
ADMIN_TRANSFERRED = 'ADMIN_TRANSFERRED'
LEAGUE_MANAGER_ASSIGNED = 'LEAGUE_MANAGER_ASSIGNED'
TEAM_JOIN_REQUEST = 'team_join_request'
TEAM_JOIN_APPROVED = 'team_join_approved'
TEAM_JOIN_REJECTED = 'team_join_rejected'
LEAGUE_JOIN_REQUEST = 'league_join_request'
LEAGUE_JOIN_APPROVED = 'league_join_approved'
LEAGUE_JOIN_REJECTED = 'league_join_rejected'
MATCH_SCHEDULED = 'season_match.scheduled'
SCORE_SUBMITTED = 'season_match.score_submitted'
SCORE_CONFIRMED = 'season_match.score_confirmed'
SCORE_DISPUTED = 'season_match.score_disputed'
LEAGUE_SCORE_CONFIRMED = 'league.match_score_confirmed'
LEAGUE_SCORE_DISPUTED = 'league.match_score_disputed'

_ASSIGNMENT_TYPES = (ASSIGNMENT_PENDING, ASSIGNMENT_REMOVED, PLAYER_REMOVED_SELF)

_COUNT_CATEGORIES = {
    'assignments': _ASSIGNMENT_TYPES,
    'chat': (CHAT_MESSAGE,),
    'join_requests': (TEAM_JOIN_REQUEST, LEAGUE_JOIN_REQUEST),
    'scores': (
        SCORE_SUBMITTED, SCORE_CONFIRMED, SCORE_DISPUTED,
        LEAGUE_SCORE_CONFIRMED, LEAGUE_SCORE_DISPUTED,
    ),
}


def notification(user_id, notif_type, team_id=None, payload=None):
    """Describe one notification for :func:`emit_many`."""
    return {
        'user_id': user_id,
        'notif_type': notif_type,
        'team_id': team_id,
        'payload': payload or {},
    }


def emit(user_id, notif_type, team_id=None, payload=None):
    created = emit_many([notification(user_id, notif_type, team_id, payload)])
    return created[0] if created else None


def emit_many(entries):
    """Store one unread notification per entry in its own transaction.

    Failures are logged and rolled back; the caller's committed state is
    untouched.
    """
    notes = []
    try:
        for entry in entries:
            if not entry.get('user_id'):
                continue
            note = Notification(
                user_id=entry['user_id'],
                team_id=entry.get('team_id'),
                notif_type=entry['notif_type'],
                payload=json.dumps(entry.get('payload') or {}, default=str),
                read=False,
            )
            db.session.add(note)
            notes.append(note)
        if not notes:
            return []
        for note in notes:
            queue_user_broadcast(note.user_id, 'notification_update', {
                'team_id': note.team_id,
                'reason': note.notif_type,
            })
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('Failed to store %d notifications', len(notes))
        return []
    return notes


# ── Obsolete notification sweep ──────────────────────────────────────

def _assignment_pending_obsolete(data, now):
    assignment_id = data.get('assignment_id')
    if not assignment_id:
        return False
    assignment = db.session.get(Assignment, assignment_id)
    return assignment is None or assignment.confirmed


def _assignment_removed_obsolete(data, now):
    match_id = data.get('match_id')
    if not match_id:
        return False
    match = db.session.get(SeasonMatch, match_id)
    return bool(match and match.scheduled_at and match.scheduled_at < now)


def _player_removed_self_obsolete(data, now):
    match_id = data.get('match_id')
    player_id = data.get('player_id')
    if not match_id or not player_id:
        return False
    return Assignment.query.filter_by(
        season_match_id=match_id, user_id=player_id
    ).first() is not None


def _score_submitted_obsolete(data, now):
    submission_id = data.get('submission_id')
    if not submission_id:
        return False
    submission = db.session.get(ScoreSubmission, submission_id)
    return submission is None or submission.status != PENDING


def _join_request_obsolete(model):
    def _check(data, now):
        request_id = data.get('request_id')
        if not request_id:
            return False
        join_request = db.session.get(model, request_id)
        return join_request is None or join_request.status != PENDING
    return _check


_OBSOLETE_RULES = {
    ASSIGNMENT_PENDING: _assignment_pending_obsolete,
    ASSIGNMENT_REMOVED: _assignment_removed_obsolete,
    PLAYER_REMOVED_SELF: _player_removed_self_obsolete,
    SCORE_SUBMITTED: _score_submitted_obsolete,
    TEAM_JOIN_REQUEST: _join_request_obsolete(TeamJoinRequest),
    LEAGUE_JOIN_REQUEST: _join_request_obsolete(LeagueJoinRequest),
}


def _stale_match_notification(note, data, cutoff):
    if note.notif_type not in _ASSIGNMENT_TYPES:
        return False
    scheduled_at = parse_iso_datetime(data.get('scheduled_at'))
    return bool(scheduled_at and scheduled_at < cutoff)


def retire_obsolete(user_id=None):
    """Mark read every unread notification whose subject no longer needs action.

    Scoped to ``user_id`` when given, otherwise sweeps all users. Returns the
    number of notifications retired.
    """
    now = utcnow_naive()
    stale_hours = current_app.config.get('MATCH_NOTIFICATION_STALE_HOURS', 24)
    cutoff = now - timedelta(hours=stale_hours)

    query = Notification.query.filter(
        Notification.read.is_(False),
        Notification.notif_type.in_(list(_OBSOLETE_RULES)),
    )
    if user_id is not None:
        query = query.filter(Notification.user_id == user_id)

    obsolete_ids = []
    for note in query.all():
        data = note.data
        if _OBSOLETE_RULES[note.notif_type](data, now) or _stale_match_notification(note, data, cutoff):
            obsolete_ids.append(note.id)

    if not obsolete_ids:
        return 0
    Notification.query.filter(
        Notification.id.in_(obsolete_ids),
        Notification.read.is_(False),
    ).update({'read': True}, synchronize_session=False)
    db.session.commit()
    logger.debug('Retired %d obsolete notifications', len(obsolete_ids))
    return len(obsolete_ids)


def retire_for_reference(notif_type, key, value):
    """Mark read the unread notifications of one type that point at ``value``.

    Runs after the caller's change is committed, so a store failure is logged
    and reported as nothing retired.
    """
    # Matches how json.dumps writes the pair; the decoded check below is exact.
    fragment = f'%{json.dumps(key)}: {json.dumps(value)}%'
    try:
        candidates = Notification.query.filter(
            Notification.notif_type == notif_type,
            Notification.read.is_(False),
            Notification.payload.like(fragment),
        ).all()
        matching = [note.id for note in candidates if note.data.get(key) == value]
        if not matching:
            return 0
        Notification.query.filter(Notification.id.in_(matching)).update(
            {'read': True}, synchronize_session=False,
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('Failed to retire %s notifications for %s=%s', notif_type, key, value)
        return 0
    return len(matching)


# ── User-invoked operations ──────────────────────────────────────────

def list_notifications(user_id):
    retire_obsolete(user_id)
    limit = current_app.config.get('NOTIFICATION_LIST_LIMIT', 50)
    return Notification.query.filter_by(user_id=user_id).order_by(
        Notification.created_at.desc(), Notification.id.desc()
    ).limit(limit).all()


def mark_read(user_id, notification_id, read=True):
    note = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if not note:
        raise NotFound('Notification not found')
    note.read = bool(read)
    db.session.commit()
    return note


def mark_all_read(user_id, notif_type=None, team_id=None):
    query = Notification.query.filter_by(user_id=user_id, read=False)
    if notif_type:
        query = query.filter(Notification.notif_type == notif_type)
    if team_id:
        query = query.filter(Notification.team_id == team_id)
    updated = query.update({'read': True}, synchronize_session=False)
    db.session.commit()
    return updated


def mark_assignments_read(user_id):
    return mark_all_read(user_id, notif_type=ASSIGNMENT_PENDING)


def mark_chat_read(user_id, team_id):
    return mark_all_read(user_id, notif_type=CHAT_MESSAGE, team_id=team_id)


def delete_all(user_id):
    deleted = Notification.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def unread_counts(user_id):
    rows = db.session.query(
        Notification.notif_type, func.count(Notification.id)
    ).filter(
        Notification.user_id == user_id,
        Notification.read.is_(False),
    ).group_by(Notification.notif_type).all()
    by_type = dict(rows)

    counts = {'total': sum(by_type.values())}
    for category, types in _COUNT_CATEGORIES.items():
        counts[category] = sum(by_type.get(notif_type, 0) for notif_type in types)
    return counts
