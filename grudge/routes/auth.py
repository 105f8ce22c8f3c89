import re

from flask import Blueprint, request, jsonify
from werkzeug.security import generate_password_hash, check_password_hash
from grudge.app import db
from grudge.auth_utils import configured_admin_emails, generate_token, login_required
from grudge.errors import Conflict, Invalid, Unauthorized
from grudge.models import LeagueTeam, League, TeamMember, User
from grudge.routes.helpers import json_body

auth_bp = Blueprint('auth', __name__)


def _is_configured_admin_email(email):
    normalized = (email or '').strip().lower()
    return normalized in configured_admin_emails()


def _maybe_grant_admin_from_config(user):
    if not user or user.is_admin:
        return False
    if not _is_configured_admin_email(user.email):
        return False
    user.is_admin = True
    return True


def _password_complexity_error(raw_password):
    password = str(raw_password or '')
    if len(password) < 8:
        return 'Password must be at least 8 characters long'
    if not re.search(r'[A-Za-z]', password) or not re.search(r'\d', password):
        return 'Password must include at least one letter and one number'
    return None


@auth_bp.route('/register', methods=['POST'])
def register():
    data = json_body()
    if not data.get('username') or not data.get('email') or not data.get('password'):
        raise Invalid('Username, email, and password are required')

    username = str(data['username']).strip()
    email = str(data['email']).strip().lower()
    password_error = _password_complexity_error(data.get('password'))
    if password_error:
        raise Invalid(password_error)

    if User.query.filter_by(username=username).first():
        raise Conflict('Username already taken')
    if User.query.filter_by(email=email).first():
        raise Conflict('Email already registered')

    user = User(
        username=username,
        email=email,
        password_hash=generate_password_hash(data['password']),
        is_admin=_is_configured_admin_email(email),
        name=str(data.get('name') or '').strip()[:120],
    )
    db.session.add(user)
    db.session.commit()
    token = generate_token(user.id)
    return jsonify({'token': token, 'user': user.to_dict()}), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = json_body()
    if not data.get('email') or not data.get('password'):
        raise Invalid('Email and password are required')

    email = str(data['email']).strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, str(data['password'])):
        raise Unauthorized('Invalid email or password')

    if _maybe_grant_admin_from_config(user):
        db.session.commit()

    token = generate_token(user.id)
    return jsonify({'token': token, 'user': user.to_dict()})


@auth_bp.route('/profile', methods=['GET'])
@login_required
def get_profile():
    user = request.current_user
    profile = user.to_dict()
    memberships = TeamMember.query.filter_by(user_id=user.id).all()
    profile['teams'] = [
        {
            'team_id': m.team_id,
            'team_name': m.team.name if m.team else None,
            'role': m.role,
            'is_admin': m.is_admin,
        }
        for m in memberships
    ]
    team_ids = [m.team_id for m in memberships]
    league_ids = set()
    if team_ids:
        league_ids.update(
            row.league_id for row in LeagueTeam.query.filter(LeagueTeam.team_id.in_(team_ids)).all()
        )
    managed = League.query.filter_by(manager_id=user.id).all()
    profile['managed_league_ids'] = [league.id for league in managed]
    league_ids.update(profile['managed_league_ids'])
    profile['league_ids'] = sorted(league_ids)
    return jsonify({'user': profile})


@auth_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    data = json_body()
    user = request.current_user
    if 'name' in data:
        user.name = str(data.get('name') or '').strip()[:120]
    db.session.commit()
    return jsonify({'user': user.to_dict()})
