from flask import Blueprint, jsonify
from grudge.auth_utils import login_required
from grudge.roles import ADMIN
from grudge.routes.helpers import current_user_id, json_body, parse_id, require_bool
from grudge.services import authority, chat, joins
from grudge.services.common import get_membership, get_team

teams_bp = Blueprint('teams', __name__)


@teams_bp.route('', methods=['POST'])
@login_required
def create_team():
    data = json_body()
    team = authority.create_team(
        current_user_id(),
        data.get('name'),
        data.get('sport'),
        password=data.get('password') or None,
    )
    return jsonify({'team': team.to_dict(include_invite=True)}), 201


@teams_bp.route('/<int:team_id>', methods=['GET'])
@login_required
def get_team_detail(team_id):
    team = get_team(team_id)
    membership = get_membership(team.id, current_user_id())
    payload = team.to_dict(include_invite=bool(membership and membership.is_admin))
    payload['my_membership'] = membership.to_dict() if membership else None
    return jsonify({'team': payload})


@teams_bp.route('/<int:team_id>/members', methods=['GET'])
@login_required
def get_members(team_id):
    members = authority.list_members(current_user_id(), team_id)
    return jsonify({'members': [m.to_dict() for m in members]})


@teams_bp.route('/<int:team_id>/promote', methods=['POST'])
@login_required
def promote_member(team_id):
    data = json_body()
    membership = authority.promote(
        current_user_id(),
        team_id,
        parse_id(data.get('user_id'), 'User ID'),
        role=data.get('role') or ADMIN,
    )
    return jsonify({'membership': membership.to_dict()})


@teams_bp.route('/<int:team_id>/demote', methods=['POST'])
@login_required
def demote_member(team_id):
    data = json_body()
    membership = authority.demote(current_user_id(), team_id, parse_id(data.get('user_id'), 'User ID'))
    return jsonify({'membership': membership.to_dict()})


@teams_bp.route('/<int:team_id>/relinquish', methods=['POST'])
@login_required
def relinquish_admin(team_id):
    data = json_body()
    membership = authority.relinquish(
        current_user_id(),
        team_id,
        transfer_to_user_id=parse_id(data.get('transfer_to_user_id'), 'Transfer user ID', required=False),
    )
    return jsonify({'membership': membership.to_dict()})


@teams_bp.route('/<int:team_id>/audit', methods=['GET'])
@login_required
def get_audit_log(team_id):
    entries = authority.list_audit(current_user_id(), team_id)
    return jsonify({'entries': [entry.to_dict() for entry in entries]})


# ── Join requests ─────────────────────────────────────────────────────

@teams_bp.route('/join', methods=['POST'])
@login_required
def request_to_join():
    data = json_body()
    join_request = joins.request_team_join(
        current_user_id(), data.get('invite_code'), password=data.get('password'),
    )
    return jsonify({'request': join_request.to_dict()}), 201


@teams_bp.route('/<int:team_id>/join-requests', methods=['GET'])
@login_required
def pending_join_requests(team_id):
    pending = joins.list_pending_team_requests(current_user_id(), team_id)
    return jsonify({'requests': [r.to_dict() for r in pending]})


@teams_bp.route('/<int:team_id>/join-requests/<int:request_id>', methods=['POST'])
@login_required
def decide_join_request(team_id, request_id):
    data = json_body()
    join_request = joins.decide_team_request(
        current_user_id(), team_id, request_id, require_bool(data, 'approve'),
    )
    return jsonify({'request': join_request.to_dict()})


# ── Team chat ─────────────────────────────────────────────────────────

@teams_bp.route('/<int:team_id>/chat', methods=['GET'])
@login_required
def get_team_messages(team_id):
    messages = chat.team_messages(current_user_id(), team_id)
    return jsonify({'messages': [m.to_dict() for m in messages]})


@teams_bp.route('/<int:team_id>/chat', methods=['POST'])
@login_required
def post_team_message(team_id):
    data = json_body()
    msg = chat.post_team_message(current_user_id(), team_id, data.get('content'))
    return jsonify({'message': msg.to_dict()}), 201
