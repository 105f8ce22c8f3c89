from flask import Blueprint, jsonify
from grudge.auth_utils import login_required
from grudge.routes.helpers import current_user_id, json_body, parse_id, require_bool
from grudge.services import authority, joins, scores
from grudge.services.common import get_league

leagues_bp = Blueprint('leagues', __name__)


@leagues_bp.route('', methods=['POST'])
@login_required
def create_league():
    data = json_body()
    league = authority.create_league(current_user_id(), data.get('name'), data.get('sport'))
    return jsonify({'league': league.to_dict(include_invite=True)}), 201


@leagues_bp.route('/<int:league_id>', methods=['GET'])
@login_required
def get_league_detail(league_id):
    league = get_league(league_id)
    is_manager = league.manager_id == current_user_id()
    return jsonify({'league': league.to_dict(include_invite=is_manager)})


@leagues_bp.route('/<int:league_id>/transfer', methods=['POST'])
@login_required
def transfer_manager(league_id):
    data = json_body()
    league = authority.transfer_league_manager(
        current_user_id(), league_id, parse_id(data.get('new_manager_id'), 'New manager ID'),
    )
    return jsonify({'league': league.to_dict()})


# ── Join requests ─────────────────────────────────────────────────────

@leagues_bp.route('/join', methods=['POST'])
@login_required
def request_to_join():
    data = json_body()
    join_request = joins.request_league_join(
        current_user_id(),
        parse_id(data.get('team_id'), 'Team ID'),
        invite_code=data.get('invite_code'),
        league_id=parse_id(data.get('league_id'), 'League ID', required=False),
    )
    return jsonify({'request': join_request.to_dict()}), 201


@leagues_bp.route('/<int:league_id>/join-requests', methods=['GET'])
@login_required
def pending_join_requests(league_id):
    pending = joins.list_pending_league_requests(current_user_id(), league_id)
    return jsonify({'requests': [r.to_dict() for r in pending]})


@leagues_bp.route('/<int:league_id>/join-requests/<int:request_id>', methods=['POST'])
@login_required
def decide_join_request(league_id, request_id):
    data = json_body()
    join_request = joins.decide_league_request(
        current_user_id(), league_id, request_id, require_bool(data, 'approve'),
    )
    return jsonify({'request': join_request.to_dict()})


# ── Season matches ────────────────────────────────────────────────────

@leagues_bp.route('/<int:league_id>/matches', methods=['POST'])
@login_required
def create_match(league_id):
    data = json_body()
    match = scores.create_season_match(
        current_user_id(),
        league_id,
        parse_id(data.get('home_team_id'), 'Home team ID'),
        parse_id(data.get('away_team_id'), 'Away team ID'),
        data.get('scheduled_at'),
        location=data.get('location') or '',
    )
    return jsonify({'match': match.to_dict()}), 201


@leagues_bp.route('/<int:league_id>/scores-dashboard', methods=['GET'])
@login_required
def scores_dashboard(league_id):
    return jsonify(scores.dashboard(league_id, viewer_id=current_user_id()))
