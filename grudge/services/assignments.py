"""Players picked by their team admins to play a season match."""
import logging

from sqlalchemy.exc import SQLAlchemyError
from grudge.app import db
from grudge.errors import Conflict, Forbidden, Invalid, NotFound
from grudge.models import Assignment, SeasonMatch, CANCELLED, COMPLETED
from grudge.services import notifications as notify
from grudge.services.common import (
    commit_or_conflict, get_match, get_membership, get_team, require_team_admin,
    team_admin_ids,
)
from grudge.services.realtime import queue_broadcast
from grudge.time_utils import utcnow_naive

logger = logging.getLogger(__name__)


def _get_assignment(assignment_id):
    assignment = db.session.get(Assignment, assignment_id) if assignment_id else None
    if not assignment:
        raise NotFound('Assignment not found')
    return assignment


def _assignment_payload(assignment, match, team):
    return {
        'assignment_id': assignment.id,
        'match_id': match.id,
        'scheduled_at': match.scheduled_at.isoformat() if match.scheduled_at else None,
        'location': match.location,
        'team_id': team.id,
        'team_name': team.name,
        'player_id': assignment.user_id,
    }


def assign_player(caller_id, match_id, team_id, user_id):
    match = get_match(match_id)
    team = get_team(team_id)
    if team.id not in match.team_ids:
        raise Invalid('That team is not playing in this match')
    require_team_admin(team.id, caller_id, 'Only team administrators can assign players')
    if match.status in (COMPLETED, CANCELLED):
        raise Invalid('Players cannot be assigned to a finished match')
    if not get_membership(team.id, user_id):
        raise Invalid('Player is not a member of this team')
    if Assignment.query.filter_by(season_match_id=match.id, user_id=user_id).first():
        raise Conflict('Player is already assigned to this match')

    assignment = Assignment(season_match_id=match.id, team_id=team.id, user_id=user_id)
    db.session.add(assignment)
    queue_broadcast(team.id, 'assignment_update', {'match_id': match.id, 'reason': 'assigned'})
    commit_or_conflict('Player is already assigned to this match')

    notify.emit(user_id, notify.ASSIGNMENT_PENDING, team_id=team.id,
                payload=_assignment_payload(assignment, match, team))
    return assignment


def confirm_assignment(user_id, assignment_id):
    assignment = _get_assignment(assignment_id)
    if assignment.user_id != user_id:
        raise Forbidden('Only the assigned player can confirm')
    if not assignment.confirmed:
        assignment.confirmed = True
        assignment.confirmed_at = utcnow_naive()
        queue_broadcast(assignment.team_id, 'assignment_update', {
            'match_id': assignment.season_match_id, 'reason': 'confirmed',
        })
        db.session.commit()

    try:
        notify.mark_assignments_read(user_id)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('Failed to clear assignment notifications for user %s', user_id)
    return assignment


def remove_assignment(caller_id, assignment_id):
    """Drop a player from a match, by a team admin or the player themself."""
    assignment = _get_assignment(assignment_id)
    removed_self = assignment.user_id == caller_id
    if not removed_self:
        require_team_admin(assignment.team_id, caller_id,
                           'Only team administrators can remove other players')

    match = assignment.season_match
    team = get_team(assignment.team_id)
    payload = _assignment_payload(assignment, match, team)
    player_id = assignment.user_id

    db.session.delete(assignment)
    queue_broadcast(team.id, 'assignment_update', {'match_id': match.id, 'reason': 'removed'})
    db.session.commit()

    if removed_self:
        notify.emit_many([
            notify.notification(admin_id, notify.PLAYER_REMOVED_SELF, team.id, payload)
            for admin_id in team_admin_ids(team.id, exclude=[player_id])
        ])
    else:
        notify.emit(player_id, notify.ASSIGNMENT_REMOVED, team_id=team.id, payload=payload)
    return payload


def list_assignments(user_id):
    return Assignment.query.join(
        SeasonMatch, SeasonMatch.id == Assignment.season_match_id
    ).filter(Assignment.user_id == user_id).order_by(
        SeasonMatch.scheduled_at.asc(), Assignment.id.asc()
    ).all()
