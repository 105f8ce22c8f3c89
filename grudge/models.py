import json
from sqlalchemy import event
from grudge.app import db
from grudge.roles import MEMBER
from grudge.time_utils import utcnow_naive

PENDING = 'PENDING'
APPROVED = 'APPROVED'
REJECTED = 'REJECTED'

AGREED = 'AGREED'
DISPUTED = 'DISPUTED'

SCHEDULED = 'SCHEDULED'
POSTPONED = 'POSTPONED'
COMPLETED = 'COMPLETED'
CANCELLED = 'CANCELLED'
MATCH_STATUSES = (SCHEDULED, POSTPONED, COMPLETED, CANCELLED)


def _safe_json(raw_value, fallback=None):
    if fallback is None:
        fallback = {}
    if not raw_value:
        return fallback
    try:
        return json.loads(raw_value)
    except (TypeError, ValueError):
        return fallback


def _iso(value):
    return value.isoformat() if value else None


def _pending_only():
    return db.text("status = 'PENDING'")


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    name = db.Column(db.String(120), default='')
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    @property
    def display_name(self):
        return self.name or self.username or self.email

    def to_dict(self):
        return {
            'id': self.id, 'username': self.username, 'email': self.email,
            'name': self.name, 'is_admin': self.is_admin,
            'created_at': _iso(self.created_at),
        }

    def to_public_dict(self):
        return {'id': self.id, 'username': self.username, 'name': self.name}


# ── Teams ─────────────────────────────────────────────────────────────

class Team(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    sport = db.Column(db.String(40), nullable=False)
    password_hash = db.Column(db.String(256), nullable=True)
    invite_code = db.Column(db.String(16), unique=True, nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    created_by = db.relationship('User', backref='teams_created')
    members = db.relationship('TeamMember', backref='team', lazy='dynamic')

    def to_dict(self, include_invite=False):
        data = {
            'id': self.id, 'name': self.name, 'sport': self.sport,
            'has_password': bool(self.password_hash),
            'created_by_id': self.created_by_id,
            'member_count': self.members.count(),
            'created_at': _iso(self.created_at),
        }
        if include_invite:
            data['invite_code'] = self.invite_code
        return data


class TeamMember(db.Model):
    """A user's membership in a team with their role and admin rights."""
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=MEMBER)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    joined_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.UniqueConstraint('user_id', 'team_id', name='uq_team_member_user_team'),
        # At most one captain per team.
        db.Index(
            'uq_team_member_one_captain', 'team_id', unique=True,
            sqlite_where=db.text("role = 'CAPTAIN'"),
            postgresql_where=db.text("role = 'CAPTAIN'"),
        ),
        db.Index('ix_team_member_team_admin', 'team_id', 'is_admin'),
    )

    user = db.relationship('User', backref='memberships')

    def to_dict(self):
        return {
            'id': self.id, 'team_id': self.team_id, 'user_id': self.user_id,
            'role': self.role, 'is_admin': self.is_admin,
            'joined_at': _iso(self.joined_at),
            'user': self.user.to_public_dict() if self.user else None,
        }


class TeamJoinRequest(db.Model):
    """A user asking to join a team."""
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PENDING)
    requested_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    responded_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    responded_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index(
            'uq_team_join_request_pending', 'team_id', 'user_id', unique=True,
            sqlite_where=_pending_only(), postgresql_where=_pending_only(),
        ),
    )

    team = db.relationship('Team', backref='join_requests')
    user = db.relationship('User', foreign_keys=[user_id], backref='team_join_requests')

    def to_dict(self):
        return {
            'id': self.id, 'team_id': self.team_id, 'user_id': self.user_id,
            'status': self.status,
            'requested_at': _iso(self.requested_at),
            'responded_by_id': self.responded_by_id,
            'responded_at': _iso(self.responded_at),
            'user': self.user.to_public_dict() if self.user else None,
            'team': {'id': self.team.id, 'name': self.team.name} if self.team else None,
        }


# ── Leagues ───────────────────────────────────────────────────────────

class League(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    sport = db.Column(db.String(40), nullable=False)
    manager_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    invite_code = db.Column(db.String(16), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    manager = db.relationship('User', backref='leagues_managed')
    teams = db.relationship('LeagueTeam', backref='league', lazy='dynamic')

    def to_dict(self, include_invite=False):
        data = {
            'id': self.id, 'name': self.name, 'sport': self.sport,
            'manager_id': self.manager_id,
            'manager': self.manager.to_public_dict() if self.manager else None,
            'team_ids': [lt.team_id for lt in self.teams],
            'created_at': _iso(self.created_at),
        }
        if include_invite:
            data['invite_code'] = self.invite_code
        return data


class LeagueTeam(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    league_id = db.Column(db.Integer, db.ForeignKey('league.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    joined_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.UniqueConstraint('league_id', 'team_id', name='uq_league_team'),
    )

    team = db.relationship('Team', backref='league_entries')


class LeagueJoinRequest(db.Model):
    """A team asking to join a league, filed by one of its admins."""
    id = db.Column(db.Integer, primary_key=True)
    league_id = db.Column(db.Integer, db.ForeignKey('league.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    requested_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PENDING)
    requested_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    responded_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    responded_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index(
            'uq_league_join_request_pending', 'league_id', 'team_id', unique=True,
            sqlite_where=_pending_only(), postgresql_where=_pending_only(),
        ),
    )

    league = db.relationship('League', backref='join_requests')
    team = db.relationship('Team', backref='league_join_requests')
    requested_by = db.relationship('User', foreign_keys=[requested_by_id])

    def to_dict(self):
        return {
            'id': self.id, 'league_id': self.league_id, 'team_id': self.team_id,
            'requested_by_id': self.requested_by_id, 'status': self.status,
            'requested_at': _iso(self.requested_at),
            'responded_by_id': self.responded_by_id,
            'responded_at': _iso(self.responded_at),
            'team': {
                'id': self.team.id, 'name': self.team.name, 'sport': self.team.sport,
                'member_count': self.team.members.count(),
            } if self.team else None,
            'requested_by': self.requested_by.to_public_dict() if self.requested_by else None,
        }


# ── Season matches & score reconciliation ─────────────────────────────

class SeasonMatch(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    league_id = db.Column(db.Integer, db.ForeignKey('league.id'), nullable=False)
    home_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    away_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    scheduled_at = db.Column(db.DateTime, nullable=True)
    location = db.Column(db.String(200), default='')
    status = db.Column(db.String(20), nullable=False, default=SCHEDULED)
    # Canonical result, written only once both sides agree.
    home_score = db.Column(db.Integer, nullable=True)
    away_score = db.Column(db.Integer, nullable=True)
    winner_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_season_match_league_scheduled', 'league_id', 'scheduled_at'),
    )

    league = db.relationship('League', backref='matches')
    home_team = db.relationship('Team', foreign_keys=[home_team_id])
    away_team = db.relationship('Team', foreign_keys=[away_team_id])

    @property
    def team_ids(self):
        return (self.home_team_id, self.away_team_id)

    def opponent_of(self, team_id):
        return self.away_team_id if team_id == self.home_team_id else self.home_team_id

    def to_dict(self):
        return {
            'id': self.id, 'league_id': self.league_id,
            'home_team': {'id': self.home_team.id, 'name': self.home_team.name} if self.home_team else None,
            'away_team': {'id': self.away_team.id, 'name': self.away_team.name} if self.away_team else None,
            'home_team_id': self.home_team_id, 'away_team_id': self.away_team_id,
            'scheduled_at': _iso(self.scheduled_at),
            'location': self.location, 'status': self.status,
            'home_score': self.home_score, 'away_score': self.away_score,
            'winner_team_id': self.winner_team_id,
            'completed_at': _iso(self.completed_at),
            'created_at': _iso(self.created_at),
        }


class ScoreSubmission(db.Model):
    """One side's report of a match result."""
    id = db.Column(db.Integer, primary_key=True)
    season_match_id = db.Column(db.Integer, db.ForeignKey('season_match.id'), nullable=False)
    submitting_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    submitted_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    home_score = db.Column(db.Integer, nullable=False)
    away_score = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, default='')
    status = db.Column(db.String(20), nullable=False, default=PENDING)
    dispute_reason = db.Column(db.Text, nullable=True)
    responded_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    submitted_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    resolved_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        # At most one open submission per match.
        db.Index(
            'uq_score_submission_one_pending', 'season_match_id', unique=True,
            sqlite_where=_pending_only(), postgresql_where=_pending_only(),
        ),
    )

    season_match = db.relationship('SeasonMatch', backref='submissions')
    submitting_team = db.relationship('Team')
    submitted_by = db.relationship('User', foreign_keys=[submitted_by_id])

    @property
    def scores(self):
        return (self.home_score, self.away_score)

    def to_dict(self):
        return {
            'id': self.id, 'season_match_id': self.season_match_id,
            'submitting_team_id': self.submitting_team_id,
            'submitting_team': self.submitting_team.name if self.submitting_team else None,
            'submitted_by_id': self.submitted_by_id,
            'submitted_by': self.submitted_by.display_name if self.submitted_by else None,
            'home_score': self.home_score, 'away_score': self.away_score,
            'notes': self.notes, 'status': self.status,
            'dispute_reason': self.dispute_reason,
            'responded_by_id': self.responded_by_id,
            'submitted_at': _iso(self.submitted_at),
            'resolved_at': _iso(self.resolved_at),
        }


class Assignment(db.Model):
    """A player picked by a team admin to play a season match."""
    id = db.Column(db.Integer, primary_key=True)
    season_match_id = db.Column(db.Integer, db.ForeignKey('season_match.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    confirmed = db.Column(db.Boolean, nullable=False, default=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.UniqueConstraint('season_match_id', 'user_id', name='uq_assignment_match_user'),
    )

    season_match = db.relationship('SeasonMatch', backref='assignments')
    user = db.relationship('User', backref='assignments')

    def to_dict(self):
        return {
            'id': self.id, 'season_match_id': self.season_match_id,
            'team_id': self.team_id, 'user_id': self.user_id,
            'confirmed': self.confirmed,
            'confirmed_at': _iso(self.confirmed_at),
            'created_at': _iso(self.created_at),
            'match': self.season_match.to_dict() if self.season_match else None,
        }


# ── Messaging ─────────────────────────────────────────────────────────

class Message(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_message_team_created', 'team_id', 'created_at'),
    )

    sender = db.relationship('User', backref='sent_messages')

    def to_dict(self):
        return {
            'id': self.id, 'team_id': self.team_id, 'sender_id': self.sender_id,
            'content': self.content,
            'created_at': _iso(self.created_at),
            'sender': self.sender.to_public_dict() if self.sender else None,
        }


# ── Notifications ─────────────────────────────────────────────────────

class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    notif_type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.Text, default='{}')
    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_notification_user_read_type', 'user_id', 'read', 'notif_type'),
    )

    @property
    def data(self):
        return _safe_json(self.payload)

    def to_dict(self):
        return {
            'id': self.id, 'user_id': self.user_id, 'team_id': self.team_id,
            'notif_type': self.notif_type, 'payload': self.data,
            'read': self.read,
            'created_at': _iso(self.created_at),
        }


# ── Audit ─────────────────────────────────────────────────────────────

class AuditLog(db.Model):
    """Append-only record of authority and result changes."""
    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    league_id = db.Column(db.Integer, db.ForeignKey('league.id'), nullable=True)
    target_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    action = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.Text, default='{}')
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_audit_log_team_created', 'team_id', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id, 'actor_id': self.actor_id, 'team_id': self.team_id,
            'league_id': self.league_id, 'target_id': self.target_id,
            'action': self.action, 'payload': _safe_json(self.payload),
            'created_at': _iso(self.created_at),
        }


@event.listens_for(AuditLog, 'before_update')
def _reject_audit_update(mapper, connection, target):
    raise ValueError('Audit log entries cannot be modified')


@event.listens_for(AuditLog, 'before_delete')
def _reject_audit_delete(mapper, connection, target):
    raise ValueError('Audit log entries cannot be deleted')
