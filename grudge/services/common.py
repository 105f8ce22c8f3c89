"""Lookups and transaction helpers shared by the service modules."""
from sqlalchemy.exc import IntegrityError
from grudge.app import db
from grudge.errors import Conflict, Forbidden, NotFound
from grudge.models import League, LeagueTeam, SeasonMatch, Team, TeamMember, User


def get_user(user_id):
    user = db.session.get(User, user_id) if user_id else None
    if not user:
        raise NotFound('User not found')
    return user


def get_team(team_id):
    team = db.session.get(Team, team_id) if team_id else None
    if not team:
        raise NotFound('Team not found')
    return team


def get_league(league_id):
    league = db.session.get(League, league_id) if league_id else None
    if not league:
        raise NotFound('League not found')
    return league


def get_match(match_id):
    match = db.session.get(SeasonMatch, match_id) if match_id else None
    if not match:
        raise NotFound('Season match not found')
    return match


def get_membership(team_id, user_id):
    return TeamMember.query.filter_by(team_id=team_id, user_id=user_id).first()


def require_team_member(team_id, user_id, message='You are not a member of this team'):
    membership = get_membership(team_id, user_id)
    if not membership:
        raise Forbidden(message)
    return membership


def require_team_admin(team_id, user_id, message='Only team administrators can do this'):
    membership = get_membership(team_id, user_id)
    if not membership or not membership.is_admin:
        raise Forbidden(message)
    return membership


def require_league_manager(league, user_id, message='Only the League Manager can do this'):
    if league.manager_id != user_id:
        raise Forbidden(message)
    return league


def team_admin_ids(team_id, exclude=None):
    excluded = set(exclude or [])
    rows = TeamMember.query.filter_by(team_id=team_id, is_admin=True).all()
    return [row.user_id for row in rows if row.user_id not in excluded]


def team_member_ids(team_id, exclude=None):
    excluded = set(exclude or [])
    rows = TeamMember.query.filter_by(team_id=team_id).all()
    return [row.user_id for row in rows if row.user_id not in excluded]


def team_in_league(league_id, team_id):
    return LeagueTeam.query.filter_by(league_id=league_id, team_id=team_id).first() is not None


def commit_or_conflict(message):
    """Commit, turning a uniqueness violation into a Conflict."""
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict(message)
