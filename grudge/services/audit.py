import json
from grudge.app import db
from grudge.models import AuditLog

ROLE_UPDATE = 'ROLE_UPDATE'
ROLE_CONSISTENCY_FIX = 'ROLE_CONSISTENCY_FIX'
DEMOTE = 'DEMOTE'
ADMIN_RELINQUISHED = 'ADMIN_RELINQUISHED'
ADMIN_TRANSFERRED = 'ADMIN_TRANSFERRED'
TEAM_CREATED = 'TEAM_CREATED'
LEAGUE_CREATED = 'LEAGUE_CREATED'
LEAGUE_MANAGER_TRANSFERRED = 'LEAGUE_MANAGER_TRANSFERRED'
JOIN_REQUEST_APPROVED = 'JOIN_REQUEST_APPROVED'
JOIN_REQUEST_REJECTED = 'JOIN_REQUEST_REJECTED'
MATCH_CREATED = 'MATCH_CREATED'
SCORE_SUBMITTED = 'SCORE_SUBMITTED'
SCORE_AGREED = 'SCORE_AGREED'
SCORE_DISPUTED = 'SCORE_DISPUTED'


def record(action, actor_id=None, team_id=None, league_id=None, target_id=None, payload=None):
    """Append an audit entry to the current transaction."""
    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        team_id=team_id,
        league_id=league_id,
        target_id=target_id,
        payload=json.dumps(payload or {}, default=str),
    )
    db.session.add(entry)
    return entry


def entries_for_team(team_id, limit=100):
    return AuditLog.query.filter_by(team_id=team_id).order_by(
        AuditLog.created_at.desc(), AuditLog.id.desc()
    ).limit(limit).all()
