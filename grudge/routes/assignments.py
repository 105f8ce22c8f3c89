from flask import Blueprint, jsonify
from grudge.auth_utils import login_required
from grudge.routes.helpers import current_user_id
from grudge.services import assignments

assignments_bp = Blueprint('assignments', __name__)


@assignments_bp.route('', methods=['GET'])
@login_required
def my_assignments():
    rows = assignments.list_assignments(current_user_id())
    return jsonify({'assignments': [a.to_dict() for a in rows]})


@assignments_bp.route('/<int:assignment_id>/confirm', methods=['POST'])
@login_required
def confirm_assignment(assignment_id):
    assignment = assignments.confirm_assignment(current_user_id(), assignment_id)
    return jsonify({'assignment': assignment.to_dict()})


@assignments_bp.route('/<int:assignment_id>', methods=['DELETE'])
@login_required
def remove_assignment(assignment_id):
    removed = assignments.remove_assignment(current_user_id(), assignment_id)
    return jsonify({'removed': removed})
