from flask import Blueprint, jsonify
from grudge.auth_utils import login_required
from grudge.routes.helpers import current_user_id, json_body, parse_id
from grudge.services import assignments, scores

matches_bp = Blueprint('matches', __name__)


def _outcome_response(result):
    return jsonify({
        'outcome': result['outcome'],
        'submission': result['submission'].to_dict(),
        'match': result['match'].to_dict(),
    })


@matches_bp.route('/<int:match_id>/scores', methods=['POST'])
@login_required
def submit_score(match_id):
    """Report the result for one side. Completes the match only when both sides agree."""
    data = json_body()
    result = scores.submit_score(
        current_user_id(),
        match_id,
        data.get('home_score'),
        data.get('away_score'),
        team_id=parse_id(data.get('team_id'), 'Team ID', required=False),
        notes=data.get('notes') or '',
    )
    return _outcome_response(result)


@matches_bp.route('/<int:match_id>/scores', methods=['GET'])
@login_required
def get_submissions(match_id):
    submissions = scores.match_submissions(current_user_id(), match_id)
    return jsonify({'submissions': [s.to_dict() for s in submissions]})


@matches_bp.route('/<int:match_id>/scores/<int:submission_id>', methods=['POST'])
@login_required
def respond_to_submission(match_id, submission_id):
    data = json_body()
    result = scores.respond_to_submission(
        current_user_id(),
        match_id,
        submission_id,
        data.get('action'),
        dispute_reason=data.get('dispute_reason'),
    )
    return _outcome_response(result)


@matches_bp.route('/<int:match_id>/assignments', methods=['POST'])
@login_required
def assign_player(match_id):
    data = json_body()
    assignment = assignments.assign_player(
        current_user_id(),
        match_id,
        parse_id(data.get('team_id'), 'Team ID'),
        parse_id(data.get('user_id'), 'User ID'),
    )
    return jsonify({'assignment': assignment.to_dict()}), 201
