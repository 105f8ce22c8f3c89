from flask import current_app
from grudge.app import db
from grudge.errors import Invalid
from grudge.models import Message
from grudge.services import notifications as notify
from grudge.services.common import get_team, require_team_member, team_member_ids
from grudge.services.realtime import queue_broadcast

_MAX_MESSAGE_LENGTH = 2000


def post_team_message(user_id, team_id, content):
    team = get_team(team_id)
    require_team_member(team.id, user_id, 'Team chat is limited to team members')
    content = str(content or '').strip()
    if not content:
        raise Invalid('Message content is required')
    if len(content) > _MAX_MESSAGE_LENGTH:
        raise Invalid(f'Messages are limited to {_MAX_MESSAGE_LENGTH} characters')

    msg = Message(team_id=team.id, sender_id=user_id, content=content)
    db.session.add(msg)
    db.session.flush()
    queue_broadcast(team.id, 'chat_message', msg.to_dict())
    db.session.commit()

    sender = msg.sender
    notify.emit_many([
        notify.notification(member_id, notify.CHAT_MESSAGE, team.id, {
            'message_id': msg.id,
            'team_id': team.id,
            'team_name': team.name,
            'sender_id': user_id,
            'sender_name': sender.display_name if sender else None,
            'preview': content[:80],
        })
        for member_id in team_member_ids(team.id, exclude=[user_id])
    ])
    return msg


def team_messages(user_id, team_id):
    team = get_team(team_id)
    require_team_member(team.id, user_id, 'Team chat is limited to team members')
    limit = current_app.config.get('CHAT_HISTORY_LIMIT', 100)
    # Newest page, returned oldest first.
    recent = Message.query.filter_by(team_id=team.id).order_by(
        Message.created_at.desc(), Message.id.desc()
    ).limit(limit).all()
    return list(reversed(recent))
