"""Join requests: teams asking to enter leagues, users asking to enter teams.

A request moves from PENDING to APPROVED or REJECTED exactly once.
"""
import logging

from werkzeug.security import check_password_hash
from grudge.app import db
from grudge.errors import Conflict, Forbidden, Invalid, NotFound
from grudge.models import (
    League, LeagueJoinRequest, LeagueTeam, Team, TeamJoinRequest, TeamMember,
    APPROVED, PENDING, REJECTED,
)
from grudge.roles import MEMBER
from grudge.services import audit
from grudge.services import notifications as notify
from grudge.services.common import (
    commit_or_conflict, get_league, get_membership, get_team, require_league_manager,
    require_team_admin, team_admin_ids, team_in_league,
)
from grudge.services.realtime import queue_broadcast
from grudge.time_utils import utcnow_naive

logger = logging.getLogger(__name__)

_ALREADY_DECIDED = 'This request has already been decided'


def _normalize_code(raw_code):
    return str(raw_code or '').strip().upper()


def _resolve_league(invite_code=None, league_id=None):
    league = None
    code = _normalize_code(invite_code)
    if code:
        league = League.query.filter_by(invite_code=code).first()
    elif league_id:
        league = db.session.get(League, league_id)
    if not league:
        raise NotFound('League not found')
    return league


def _check_sport(team, league):
    if team.sport != league.sport:
        raise Invalid(f'{team.name} plays {team.sport}, but this league is for {league.sport}')


def _claim(model, request_id, approve, approver_id):
    """Flip a PENDING request to its decision; only one decider can win."""
    claimed = model.query.filter_by(id=request_id, status=PENDING).update({
        'status': APPROVED if approve else REJECTED,
        'responded_by_id': approver_id,
        'responded_at': utcnow_naive(),
    }, synchronize_session=False)
    if not claimed:
        db.session.rollback()
        raise Invalid(_ALREADY_DECIDED)


# ── Team → league ─────────────────────────────────────────────────────

def request_league_join(user_id, team_id, invite_code=None, league_id=None):
    league = _resolve_league(invite_code, league_id)
    team = get_team(team_id)
    require_team_admin(team.id, user_id, 'Only team administrators can request to join a league')
    _check_sport(team, league)
    if team_in_league(league.id, team.id):
        raise Conflict('Team is already in this league')
    if LeagueJoinRequest.query.filter_by(
        league_id=league.id, team_id=team.id, status=PENDING
    ).first():
        raise Conflict('A join request for this team is already pending')

    join_request = LeagueJoinRequest(
        league_id=league.id, team_id=team.id, requested_by_id=user_id, status=PENDING,
    )
    db.session.add(join_request)
    commit_or_conflict('A join request for this team is already pending')

    notify.emit(league.manager_id, notify.LEAGUE_JOIN_REQUEST, payload={
        'request_id': join_request.id,
        'league_id': league.id,
        'league_name': league.name,
        'team_id': team.id,
        'team_name': team.name,
    })
    return join_request


def list_pending_league_requests(caller_id, league_id):
    league = get_league(league_id)
    require_league_manager(league, caller_id, 'Only the League Manager can view join requests')
    return LeagueJoinRequest.query.filter_by(league_id=league_id, status=PENDING).order_by(
        LeagueJoinRequest.requested_at.desc(), LeagueJoinRequest.id.desc()
    ).all()


def decide_league_request(approver_id, league_id, request_id, approve):
    league = get_league(league_id)
    require_league_manager(league, approver_id, 'Only the League Manager can decide join requests')
    join_request = db.session.get(LeagueJoinRequest, request_id)
    if not join_request or join_request.league_id != league.id:
        raise NotFound('Join request not found')
    if join_request.status != PENDING:
        raise Invalid(_ALREADY_DECIDED)

    team = join_request.team
    if approve:
        _check_sport(team, league)

    requester_id = join_request.requested_by_id
    _claim(LeagueJoinRequest, request_id, approve, approver_id)
    if approve and not team_in_league(league.id, team.id):
        db.session.add(LeagueTeam(league_id=league.id, team_id=team.id))

    audit.record(
        audit.JOIN_REQUEST_APPROVED if approve else audit.JOIN_REQUEST_REJECTED,
        actor_id=approver_id, league_id=league.id, team_id=team.id,
        payload={'request_id': request_id, 'kind': 'league'},
    )
    queue_broadcast(None, 'league_update', {
        'league_id': league.id,
        'reason': 'team_joined' if approve else 'join_request_rejected',
    })
    commit_or_conflict('Team is already in this league')
    logger.info('League %s %s join request %s', league.id,
                'approved' if approve else 'rejected', request_id)

    notify.retire_for_reference(notify.LEAGUE_JOIN_REQUEST, 'request_id', request_id)
    notify.emit(
        requester_id,
        notify.LEAGUE_JOIN_APPROVED if approve else notify.LEAGUE_JOIN_REJECTED,
        team_id=team.id,
        payload={
            'request_id': request_id,
            'league_id': league.id,
            'league_name': league.name,
            'team_id': team.id,
            'team_name': team.name,
        },
    )
    return db.session.get(LeagueJoinRequest, request_id)


# ── User → team ───────────────────────────────────────────────────────

def request_team_join(user_id, invite_code, password=None):
    code = _normalize_code(invite_code)
    team = Team.query.filter_by(invite_code=code).first() if code else None
    if not team:
        raise NotFound('Invalid invite code')
    if team.password_hash and not check_password_hash(team.password_hash, password or ''):
        raise Forbidden('Incorrect team password')
    if get_membership(team.id, user_id):
        raise Conflict('You are already a member of this team')
    if TeamJoinRequest.query.filter_by(team_id=team.id, user_id=user_id, status=PENDING).first():
        raise Conflict('You already have a pending request for this team')

    join_request = TeamJoinRequest(team_id=team.id, user_id=user_id, status=PENDING)
    db.session.add(join_request)
    commit_or_conflict('You already have a pending request for this team')

    requester = join_request.user
    notify.emit_many([
        notify.notification(admin_id, notify.TEAM_JOIN_REQUEST, team.id, {
            'request_id': join_request.id,
            'team_id': team.id,
            'team_name': team.name,
            'user_id': user_id,
            'user_name': requester.display_name if requester else None,
        })
        for admin_id in team_admin_ids(team.id)
    ])
    return join_request


def list_pending_team_requests(caller_id, team_id):
    get_team(team_id)
    require_team_admin(team_id, caller_id, 'Only team administrators can view join requests')
    return TeamJoinRequest.query.filter_by(team_id=team_id, status=PENDING).order_by(
        TeamJoinRequest.requested_at.desc(), TeamJoinRequest.id.desc()
    ).all()


def decide_team_request(approver_id, team_id, request_id, approve):
    team = get_team(team_id)
    require_team_admin(team_id, approver_id, 'Only team administrators can decide join requests')
    join_request = db.session.get(TeamJoinRequest, request_id)
    if not join_request or join_request.team_id != team.id:
        raise NotFound('Join request not found')
    if join_request.status != PENDING:
        raise Invalid(_ALREADY_DECIDED)

    requester_id = join_request.user_id
    _claim(TeamJoinRequest, request_id, approve, approver_id)
    if approve and not get_membership(team.id, requester_id):
        db.session.add(TeamMember(team_id=team.id, user_id=requester_id, role=MEMBER, is_admin=False))

    audit.record(
        audit.JOIN_REQUEST_APPROVED if approve else audit.JOIN_REQUEST_REJECTED,
        actor_id=approver_id, team_id=team.id, target_id=requester_id,
        payload={'request_id': request_id, 'kind': 'team'},
    )
    queue_broadcast(team.id, 'team_update', {
        'team_id': team.id,
        'reason': 'member_joined' if approve else 'join_request_rejected',
    })
    commit_or_conflict('User is already a member of this team')

    notify.retire_for_reference(notify.TEAM_JOIN_REQUEST, 'request_id', request_id)
    notify.emit(
        requester_id,
        notify.TEAM_JOIN_APPROVED if approve else notify.TEAM_JOIN_REJECTED,
        team_id=team.id,
        payload={'request_id': request_id, 'team_id': team.id, 'team_name': team.name},
    )
    return db.session.get(TeamJoinRequest, request_id)
