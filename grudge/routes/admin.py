"""Site-admin maintenance endpoints. Safe to call repeatedly or on a schedule."""
import logging

from flask import Blueprint, jsonify
from grudge.auth_utils import admin_required
from grudge.routes.helpers import current_user_id
from grudge.services import authority, notifications

admin_bp = Blueprint('admin', __name__)
logger = logging.getLogger(__name__)


@admin_bp.route('/fix-role-consistency', methods=['POST'])
@admin_required
def fix_role_consistency():
    result = authority.reconcile_consistency(actor_id=current_user_id())
    logger.info('Admin %s ran role consistency repair: %d fixed',
                current_user_id(), result['fixed'])
    return jsonify(result)


@admin_bp.route('/retire-notifications', methods=['POST'])
@admin_required
def retire_notifications():
    retired = notifications.retire_obsolete()
    return jsonify({'retired': retired})
