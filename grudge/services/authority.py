"""Who may administer a team, and who manages a league."""
import logging
import secrets

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash
from grudge.app import db
from grudge.errors import Conflict, Forbidden, Invalid, NotFound
from grudge.models import League, LeagueTeam, Team, TeamMember
from grudge.roles import (
    ADMIN, ADMIN_ROLES, CAPTAIN, LEADERSHIP_ROLES, MEMBER,
    correct_admin_status, is_valid_role, normalize_role, role_description,
)
from grudge.services import audit
from grudge.services import notifications as notify
from grudge.services.common import (
    commit_or_conflict, get_league, get_membership, get_team, get_user,
    require_league_manager, require_team_admin, require_team_member, team_admin_ids,
)
from grudge.services.realtime import queue_broadcast

logger = logging.getLogger(__name__)

_CAPTAIN_TAKEN = 'This team already has a captain'


def _new_invite_code(model):
    while True:
        code = secrets.token_hex(4).upper()
        if not model.query.filter_by(invite_code=code).first():
            return code


def _other_captain(team_id, user_id):
    return TeamMember.query.filter(
        TeamMember.team_id == team_id,
        TeamMember.role == CAPTAIN,
        TeamMember.user_id != user_id,
    ).first()


def _leagues_anchored_by(user_id, team_id):
    """Leagues ``user_id`` manages only by being an admin of ``team_id``.

    Removing that admin membership would leave the league with a manager who
    administers none of its teams.
    """
    anchored = []
    managed = League.query.join(LeagueTeam, LeagueTeam.league_id == League.id).filter(
        League.manager_id == user_id,
        LeagueTeam.team_id == team_id,
    ).all()
    for league in managed:
        other_anchor = db.session.query(TeamMember.id).join(
            LeagueTeam, LeagueTeam.team_id == TeamMember.team_id
        ).filter(
            LeagueTeam.league_id == league.id,
            TeamMember.user_id == user_id,
            TeamMember.is_admin.is_(True),
            TeamMember.team_id != team_id,
        ).first()
        if other_anchor is None:
            anchored.append(league)
    return anchored


def _guard_league_anchor(user_id, team_id):
    anchored = _leagues_anchored_by(user_id, team_id)
    if anchored:
        names = ', '.join(league.name for league in anchored)
        raise Invalid(
            f'This admin manages {names} through this team; '
            'transfer league management first'
        )


def _queue_team_update(team_id, reason):
    queue_broadcast(team_id, 'team_update', {'team_id': team_id, 'reason': reason})


# ── Creation ──────────────────────────────────────────────────────────

def create_team(user_id, name, sport, password=None):
    name = str(name or '').strip()
    sport = str(sport or '').strip().lower()
    if not name or not sport:
        raise Invalid('Team name and sport are required')

    team = Team(
        name=name,
        sport=sport,
        invite_code=_new_invite_code(Team),
        created_by_id=user_id,
        password_hash=generate_password_hash(password) if password else None,
    )
    db.session.add(team)
    db.session.flush()
    db.session.add(TeamMember(team_id=team.id, user_id=user_id, role=ADMIN, is_admin=True))
    audit.record(audit.TEAM_CREATED, actor_id=user_id, team_id=team.id, payload={
        'name': name, 'sport': sport,
    })
    commit_or_conflict('Could not create team')
    logger.info('User %s created team %s', user_id, team.id)
    return team


def create_league(user_id, name, sport):
    name = str(name or '').strip()
    sport = str(sport or '').strip().lower()
    if not name or not sport:
        raise Invalid('League name and sport are required')

    league = League(
        name=name,
        sport=sport,
        manager_id=user_id,
        invite_code=_new_invite_code(League),
    )
    db.session.add(league)
    db.session.flush()
    audit.record(audit.LEAGUE_CREATED, actor_id=user_id, league_id=league.id, payload={
        'name': name, 'sport': sport,
    })
    commit_or_conflict('Could not create league')
    logger.info('User %s created league %s', user_id, league.id)
    return league


def list_members(caller_id, team_id):
    get_team(team_id)
    require_team_member(team_id, caller_id, 'Only team members can see the roster')
    return TeamMember.query.filter_by(team_id=team_id).order_by(
        TeamMember.joined_at.asc(), TeamMember.id.asc()
    ).all()


def list_audit(caller_id, team_id):
    get_team(team_id)
    require_team_admin(team_id, caller_id, 'Only team administrators can view the audit log')
    return audit.entries_for_team(team_id)


# ── Role changes ──────────────────────────────────────────────────────

def promote(caller_id, team_id, target_user_id, role=ADMIN):
    """Give ``target_user_id`` a new role on the team.

    Leadership roles always carry admin rights. Repeating a promotion that
    is already in effect changes nothing.
    """
    role = normalize_role(role)
    if not is_valid_role(role):
        raise Invalid(f'Unknown role: {role or "(empty)"}')

    team = get_team(team_id)
    require_team_admin(team_id, caller_id, 'Only team administrators can change roles')
    membership = get_membership(team_id, target_user_id)
    if not membership:
        raise NotFound('User is not a member of this team')

    new_is_admin = correct_admin_status(role, membership.is_admin)
    if membership.role == role and membership.is_admin == new_is_admin:
        return membership

    if role == CAPTAIN and _other_captain(team_id, target_user_id):
        raise Conflict(_CAPTAIN_TAKEN)

    previous = {'role': membership.role, 'is_admin': membership.is_admin}
    membership.role = role
    membership.is_admin = new_is_admin
    audit.record(
        audit.ROLE_UPDATE, actor_id=caller_id, team_id=team_id, target_id=target_user_id,
        payload={
            'old_role': previous['role'], 'new_role': role,
            'old_is_admin': previous['is_admin'], 'new_is_admin': new_is_admin,
        },
    )
    _queue_team_update(team_id, 'role_updated')
    commit_or_conflict(_CAPTAIN_TAKEN)

    notify.emit(target_user_id, notify.ROLE_UPDATED, team_id=team_id, payload={
        'team_name': team.name,
        'role': role,
        'role_description': role_description(role),
        'is_admin': new_is_admin,
    })
    return membership


def reconcile_consistency(actor_id=None):
    """Grant admin rights to every membership whose role requires them.

    Each row is fixed in its own transaction; a row that fails is logged and
    skipped. Never removes admin rights, so re-running is harmless.
    """
    violations = [
        (row.id, row.team_id, row.user_id, row.role)
        for row in TeamMember.query.filter(
            TeamMember.role.in_(ADMIN_ROLES),
            TeamMember.is_admin.is_(False),
        ).all()
    ]

    details = []
    for membership_id, team_id, user_id, role in violations:
        try:
            updated = TeamMember.query.filter(
                TeamMember.id == membership_id,
                TeamMember.is_admin.is_(False),
            ).update({'is_admin': True}, synchronize_session=False)
            if not updated:
                db.session.rollback()
                continue
            audit.record(
                audit.ROLE_CONSISTENCY_FIX, actor_id=actor_id, team_id=team_id,
                target_id=user_id, payload={'role': role, 'is_admin': True},
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception('Could not repair membership %s', membership_id)
            continue
        details.append({
            'membership_id': membership_id,
            'team_id': team_id,
            'user_id': user_id,
            'role': role,
        })

    if details:
        logger.info('Role consistency repair fixed %d memberships', len(details))
    return {'fixed': len(details), 'details': details}


def demote(caller_id, team_id, target_user_id):
    team = get_team(team_id)
    require_team_admin(team_id, caller_id, 'Only team administrators can demote')
    if caller_id == target_user_id:
        raise Invalid('Use relinquish to give up your own admin rights')
    membership = get_membership(team_id, target_user_id)
    if not membership:
        raise NotFound('User is not a member of this team')
    if not membership.is_admin:
        raise Invalid('User is not an administrator of this team')
    if len(team_admin_ids(team_id)) <= 1:
        raise Invalid('Cannot demote the last administrator')
    _guard_league_anchor(target_user_id, team_id)

    previous_role = membership.role
    membership.role = MEMBER
    membership.is_admin = False
    audit.record(audit.DEMOTE, actor_id=caller_id, team_id=team_id, target_id=target_user_id,
                 payload={'old_role': previous_role})
    _queue_team_update(team_id, 'admin_demoted')
    db.session.commit()

    notify.emit(target_user_id, notify.ADMIN_DEMOTED, team_id=team_id, payload={
        'team_name': team.name,
    })
    return membership


def relinquish(caller_id, team_id, transfer_to_user_id=None):
    """Caller gives up admin rights, handing them over when nobody else has them."""
    team = get_team(team_id)
    membership = require_team_admin(team_id, caller_id, 'You are not an administrator of this team')
    if membership.role in LEADERSHIP_ROLES:
        raise Invalid(
            f'{role_description(membership.role)} always has admin rights; '
            'change your role first'
        )
    _guard_league_anchor(caller_id, team_id)

    remaining_admins = team_admin_ids(team_id, exclude=[caller_id])
    successor = None
    if not remaining_admins:
        if not transfer_to_user_id:
            raise Invalid('You are the only administrator; choose a member to take over')
        if transfer_to_user_id == caller_id:
            raise Invalid('Choose another member to take over')
        get_user(transfer_to_user_id)
        successor = get_membership(team_id, transfer_to_user_id)
        if not successor:
            raise NotFound('Transfer target is not a member of this team')
        successor.is_admin = True
        if successor.role == MEMBER:
            successor.role = ADMIN

    membership.role = MEMBER
    membership.is_admin = False
    if successor:
        audit.record(audit.ADMIN_TRANSFERRED, actor_id=caller_id, team_id=team_id,
                     target_id=successor.user_id, payload={'new_role': successor.role})
    else:
        audit.record(audit.ADMIN_RELINQUISHED, actor_id=caller_id, team_id=team_id,
                     target_id=caller_id)
    _queue_team_update(team_id, 'admin_relinquished')
    db.session.commit()

    payload = {'team_name': team.name, 'user_id': caller_id}
    if successor:
        notify.emit(successor.user_id, notify.ADMIN_TRANSFERRED, team_id=team_id, payload=payload)
    else:
        notify.emit_many([
            notify.notification(admin_id, notify.ADMIN_RELINQUISHED, team_id, payload)
            for admin_id in remaining_admins
        ])
    return membership


# ── League management ─────────────────────────────────────────────────

def transfer_league_manager(caller_id, league_id, new_manager_id):
    """Hand a league to an admin of one of its teams.

    The write only applies while the caller is still the manager, so two
    racing transfers cannot both succeed.
    """
    league = get_league(league_id)
    require_league_manager(league, caller_id, 'Only the League Manager can transfer management')
    new_manager = get_user(new_manager_id)
    if new_manager.id == caller_id:
        raise Invalid('You already manage this league')

    qualifying = db.session.query(TeamMember.id).join(
        LeagueTeam, LeagueTeam.team_id == TeamMember.team_id
    ).filter(
        LeagueTeam.league_id == league_id,
        TeamMember.user_id == new_manager.id,
        TeamMember.is_admin.is_(True),
    ).first()
    if qualifying is None:
        raise Invalid('The new League Manager must be an admin of a team in this league')

    updated = League.query.filter_by(id=league_id, manager_id=caller_id).update(
        {'manager_id': new_manager.id}, synchronize_session=False,
    )
    if not updated:
        db.session.rollback()
        raise Forbidden('League management has already changed hands')

    audit.record(
        audit.LEAGUE_MANAGER_TRANSFERRED, actor_id=caller_id, league_id=league_id,
        target_id=new_manager.id, payload={'previous_manager_id': caller_id},
    )
    queue_broadcast(None, 'league_update', {'league_id': league_id, 'reason': 'manager_transferred'})
    db.session.commit()
    logger.info('League %s transferred from user %s to user %s', league_id, caller_id, new_manager.id)

    league = get_league(league_id)
    notify.emit(new_manager.id, notify.LEAGUE_MANAGER_ASSIGNED, payload={
        'league_id': league_id,
        'league_name': league.name,
        'previous_manager_id': caller_id,
    })
    return league
