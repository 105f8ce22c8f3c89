from flask import Blueprint, jsonify
from grudge.auth_utils import login_required
from grudge.routes.helpers import coerce_bool, current_user_id, json_body, parse_id
from grudge.services import notifications

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('', methods=['GET'])
@login_required
def list_notifications():
    user_id = current_user_id()
    notes = notifications.list_notifications(user_id)
    return jsonify({
        'notifications': [n.to_dict() for n in notes],
        'unread_count': notifications.unread_counts(user_id)['total'],
    })


@notifications_bp.route('', methods=['PATCH'])
@login_required
def mark_read():
    data = json_body()
    note = notifications.mark_read(
        current_user_id(),
        parse_id(data.get('id'), 'Notification ID'),
        read=coerce_bool(data.get('read', True)),
    )
    return jsonify({'notification': note.to_dict()})


@notifications_bp.route('', methods=['DELETE'])
@login_required
def delete_all():
    deleted = notifications.delete_all(current_user_id())
    return jsonify({'deleted': deleted})


@notifications_bp.route('/read-all', methods=['POST'])
@login_required
def mark_all_read():
    data = json_body()
    updated = notifications.mark_all_read(
        current_user_id(),
        notif_type=str(data.get('notif_type') or '').strip() or None,
        team_id=parse_id(data.get('team_id'), 'Team ID', required=False),
    )
    return jsonify({'updated': updated})


@notifications_bp.route('/mark-assignments-read', methods=['POST'])
@login_required
def mark_assignments_read():
    updated = notifications.mark_assignments_read(current_user_id())
    return jsonify({'updated': updated})


@notifications_bp.route('/mark-chat-read', methods=['POST'])
@login_required
def mark_chat_read():
    data = json_body()
    updated = notifications.mark_chat_read(
        current_user_id(), parse_id(data.get('team_id'), 'Team ID'),
    )
    return jsonify({'updated': updated})


@notifications_bp.route('/counts', methods=['GET'])
@login_required
def unread_counts():
    return jsonify({'counts': notifications.unread_counts(current_user_id())})
