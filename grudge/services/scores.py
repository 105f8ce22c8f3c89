"""Season matches and two-sided score reconciliation.

A result becomes canonical only when the second team reports the same
score the first one did. Each match has at most one PENDING submission.
"""
import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import and_, exists
from grudge.app import db
from grudge.errors import Conflict, Forbidden, Invalid, NotFound
from grudge.models import (
    ScoreSubmission, SeasonMatch, TeamMember,
    AGREED, CANCELLED, COMPLETED, DISPUTED, PENDING, SCHEDULED,
)
from grudge.services import audit
from grudge.services import notifications as notify
from grudge.services.common import (
    commit_or_conflict, get_league, get_match, get_membership, get_team,
    require_league_manager, require_team_admin, team_admin_ids, team_in_league,
)
from grudge.services.realtime import queue_broadcast
from grudge.time_utils import parse_iso_datetime, utcnow_naive

logger = logging.getLogger(__name__)

_PENDING_TAKEN = 'A score submission for this match is already pending'
_PENDING_CHANGED = 'The pending submission changed; reload and try again'
_CONFIRM = 'confirm'
_DISPUTE = 'dispute'


def _parse_score(raw_value, label):
    if isinstance(raw_value, bool):
        raise Invalid(f'{label} must be an integer')
    if isinstance(raw_value, float) and not raw_value.is_integer():
        raise Invalid(f'{label} must be an integer')
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        raise Invalid(f'{label} must be an integer')
    max_score = current_app.config.get('MAX_SCORE', 999)
    if value < 0 or value > max_score:
        raise Invalid(f'{label} must be between 0 and {max_score}')
    return value


def _winner(match, home_score, away_score):
    if home_score > away_score:
        return match.home_team_id
    if away_score > home_score:
        return match.away_team_id
    return None


def _submitting_team(user_id, match, team_id):
    if team_id:
        if team_id not in match.team_ids:
            raise Forbidden('That team is not playing in this match')
        require_team_admin(team_id, user_id, 'Only team administrators can submit scores')
        return team_id

    admin_of = []
    for candidate in match.team_ids:
        membership = get_membership(candidate, user_id)
        if membership and membership.is_admin:
            admin_of.append(candidate)
    if not admin_of:
        raise Forbidden('Only administrators of the two teams can submit scores')
    if len(admin_of) > 1:
        raise Invalid('You administer both teams; say which team you are reporting for')
    return admin_of[0]


def _ensure_open(match):
    if match.status == COMPLETED:
        raise Invalid('This match already has a final score')
    if match.status == CANCELLED:
        raise Invalid('This match was cancelled')


def _match_payload(match, **extra):
    payload = {
        'match_id': match.id,
        'league_id': match.league_id,
        'home_team_id': match.home_team_id,
        'away_team_id': match.away_team_id,
        'scheduled_at': match.scheduled_at.isoformat() if match.scheduled_at else None,
    }
    payload.update(extra)
    return payload


def _queue_match_update(match, reason):
    for team_id in match.team_ids:
        queue_broadcast(team_id, 'season_match_update', {'match_id': match.id, 'reason': reason})


def _outcome(outcome, submission_id, match_id):
    return {
        'outcome': outcome,
        'submission': db.session.get(ScoreSubmission, submission_id),
        'match': db.session.get(SeasonMatch, match_id),
    }


def _notify_resolution(match, agreed, payload):
    team_type = notify.SCORE_CONFIRMED if agreed else notify.SCORE_DISPUTED
    league_type = notify.LEAGUE_SCORE_CONFIRMED if agreed else notify.LEAGUE_SCORE_DISPUTED
    entries = []
    for team_id in match.team_ids:
        entries.extend(
            notify.notification(admin_id, team_type, team_id, payload)
            for admin_id in team_admin_ids(team_id)
        )
    league = match.league
    if league:
        entries.append(notify.notification(league.manager_id, league_type, None, payload))
    notify.emit_many(entries)


# ── Submission state machine ──────────────────────────────────────────

def submit_score(user_id, match_id, home_score, away_score, team_id=None, notes=''):
    """Report a result on behalf of one of the two teams.

    With nothing pending, the report waits for the other side. A report from
    the side that is already pending replaces it. A report from the other
    side either completes the match (same scores) or disputes it.
    """
    home_score = _parse_score(home_score, 'Home score')
    away_score = _parse_score(away_score, 'Away score')
    notes = str(notes or '').strip()

    match = get_match(match_id)
    team_id = _submitting_team(user_id, match, team_id)
    _ensure_open(match)

    pending = ScoreSubmission.query.filter_by(season_match_id=match.id, status=PENDING).first()
    if pending is None:
        return _open_submission(user_id, match, team_id, home_score, away_score, notes)
    if pending.submitting_team_id == team_id:
        return _replace_submission(user_id, match, pending, home_score, away_score, notes)
    return _counter_submission(user_id, match, pending, team_id, home_score, away_score, notes)


def _open_submission(user_id, match, team_id, home_score, away_score, notes):
    submission = ScoreSubmission(
        season_match_id=match.id,
        submitting_team_id=team_id,
        submitted_by_id=user_id,
        home_score=home_score,
        away_score=away_score,
        notes=notes,
        status=PENDING,
    )
    db.session.add(submission)
    db.session.flush()
    audit.record(audit.SCORE_SUBMITTED, actor_id=user_id, team_id=team_id,
                 league_id=match.league_id, payload={
                     'match_id': match.id, 'submission_id': submission.id,
                     'home_score': home_score, 'away_score': away_score,
                 })
    _queue_match_update(match, 'score_submitted')
    commit_or_conflict(_PENDING_TAKEN)

    _notify_submitted(match, submission)
    return _outcome('pending', submission.id, match.id)


def _replace_submission(user_id, match, pending, home_score, away_score, notes):
    submission_id = pending.id
    team_id = pending.submitting_team_id
    replaced = ScoreSubmission.query.filter_by(id=submission_id, status=PENDING).update({
        'home_score': home_score,
        'away_score': away_score,
        'notes': notes,
        'submitted_by_id': user_id,
        'submitted_at': utcnow_naive(),
    }, synchronize_session=False)
    if not replaced:
        db.session.rollback()
        raise Conflict(_PENDING_CHANGED)

    audit.record(audit.SCORE_SUBMITTED, actor_id=user_id, team_id=team_id,
                 league_id=match.league_id, payload={
                     'match_id': match.id, 'submission_id': submission_id,
                     'home_score': home_score, 'away_score': away_score,
                     'replaced': True,
                 })
    _queue_match_update(match, 'score_resubmitted')
    db.session.commit()

    notify.retire_for_reference(notify.SCORE_SUBMITTED, 'submission_id', submission_id)
    _notify_submitted(match, db.session.get(ScoreSubmission, submission_id))
    return _outcome('replaced', submission_id, match.id)


def _notify_submitted(match, submission):
    opponent_id = match.opponent_of(submission.submitting_team_id)
    team = submission.submitting_team
    payload = _match_payload(
        match,
        submission_id=submission.id,
        team_id=submission.submitting_team_id,
        team_name=team.name if team else None,
        home_score=submission.home_score,
        away_score=submission.away_score,
    )
    notify.emit_many([
        notify.notification(admin_id, notify.SCORE_SUBMITTED, opponent_id, payload)
        for admin_id in team_admin_ids(opponent_id)
    ])


def _claim_pending(submission_id, status, user_id, dispute_reason=None):
    claimed = ScoreSubmission.query.filter_by(id=submission_id, status=PENDING).update({
        'status': status,
        'responded_by_id': user_id,
        'resolved_at': utcnow_naive(),
        'dispute_reason': dispute_reason,
    }, synchronize_session=False)
    if not claimed:
        db.session.rollback()
        raise Conflict(_PENDING_CHANGED)


def _counter_submission(user_id, match, pending, team_id, home_score, away_score, notes):
    agreed = (home_score, away_score) == pending.scores
    status = AGREED if agreed else DISPUTED
    dispute_reason = None if agreed else (notes or 'Reported scores do not match')
    pending_id = pending.id
    first_scores = pending.scores
    now = utcnow_naive()

    _claim_pending(pending_id, status, user_id, dispute_reason)
    counter = ScoreSubmission(
        season_match_id=match.id,
        submitting_team_id=team_id,
        submitted_by_id=user_id,
        home_score=home_score,
        away_score=away_score,
        notes=notes,
        status=status,
        dispute_reason=dispute_reason,
        resolved_at=now,
    )
    db.session.add(counter)

    if agreed:
        completed = SeasonMatch.query.filter(
            SeasonMatch.id == match.id,
            SeasonMatch.status != COMPLETED,
        ).update({
            'home_score': home_score,
            'away_score': away_score,
            'winner_team_id': _winner(match, home_score, away_score),
            'status': COMPLETED,
            'completed_at': now,
        }, synchronize_session=False)
        if not completed:
            db.session.rollback()
            raise Invalid('This match already has a final score')

    db.session.flush()
    audit.record(
        audit.SCORE_AGREED if agreed else audit.SCORE_DISPUTED,
        actor_id=user_id, team_id=team_id, league_id=match.league_id,
        payload={
            'match_id': match.id,
            'submission_ids': [pending_id, counter.id],
            'first_scores': list(first_scores),
            'second_scores': [home_score, away_score],
        },
    )
    _queue_match_update(match, 'score_agreed' if agreed else 'score_disputed')
    commit_or_conflict(_PENDING_TAKEN)
    logger.info('Match %s score %s', match.id, 'agreed' if agreed else 'disputed')

    notify.retire_for_reference(notify.SCORE_SUBMITTED, 'submission_id', pending_id)
    match = get_match(match.id)
    _notify_resolution(match, agreed, _match_payload(
        match,
        submission_id=counter.id,
        home_score=home_score,
        away_score=away_score,
        first_scores=list(first_scores),
        dispute_reason=dispute_reason,
    ))
    return _outcome('agreed' if agreed else 'disputed', counter.id, match.id)


def respond_to_submission(user_id, match_id, submission_id, action, dispute_reason=None):
    """Opposing team confirms or disputes the pending submission."""
    match = get_match(match_id)
    submission = db.session.get(ScoreSubmission, submission_id)
    if not submission or submission.season_match_id != match.id:
        raise NotFound('Score submission not found')
    if submission.status != PENDING:
        raise Invalid('This submission has already been resolved')

    opponent_id = match.opponent_of(submission.submitting_team_id)
    require_team_admin(opponent_id, user_id,
                       "Only the opposing team's administrators can respond to this score")
    _ensure_open(match)

    action = str(action or '').strip().lower()
    if action == _CONFIRM:
        return submit_score(user_id, match.id, submission.home_score, submission.away_score,
                            team_id=opponent_id)
    if action != _DISPUTE:
        raise Invalid("Action must be 'confirm' or 'dispute'")

    reason = str(dispute_reason or '').strip()
    if not reason:
        raise Invalid('A reason is required to dispute a score')

    _claim_pending(submission.id, DISPUTED, user_id, reason)
    audit.record(audit.SCORE_DISPUTED, actor_id=user_id, team_id=opponent_id,
                 league_id=match.league_id, payload={
                     'match_id': match.id, 'submission_ids': [submission.id],
                     'dispute_reason': reason,
                 })
    _queue_match_update(match, 'score_disputed')
    db.session.commit()

    notify.retire_for_reference(notify.SCORE_SUBMITTED, 'submission_id', submission.id)
    submission = db.session.get(ScoreSubmission, submission_id)
    _notify_resolution(match, False, _match_payload(
        match,
        submission_id=submission.id,
        home_score=submission.home_score,
        away_score=submission.away_score,
        dispute_reason=reason,
    ))
    return _outcome('disputed', submission.id, match.id)


# ── Matches and read models ───────────────────────────────────────────

def _coerce_datetime(raw_value):
    if isinstance(raw_value, datetime):
        return parse_iso_datetime(raw_value.isoformat())
    return parse_iso_datetime(raw_value)


def create_season_match(caller_id, league_id, home_team_id, away_team_id,
                        scheduled_at, location=''):
    league = get_league(league_id)
    require_league_manager(league, caller_id, 'Only the League Manager can schedule matches')
    if not home_team_id or not away_team_id or home_team_id == away_team_id:
        raise Invalid('A match needs two different teams')
    for team_id in (home_team_id, away_team_id):
        get_team(team_id)
        if not team_in_league(league.id, team_id):
            raise Invalid(f'Team {team_id} is not in this league')
    when = _coerce_datetime(scheduled_at)
    if when is None:
        raise Invalid('scheduled_at must be an ISO 8601 timestamp')

    match = SeasonMatch(
        league_id=league.id,
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        scheduled_at=when,
        location=str(location or '').strip(),
        status=SCHEDULED,
    )
    db.session.add(match)
    db.session.flush()
    audit.record(audit.MATCH_CREATED, actor_id=caller_id, league_id=league.id,
                 payload={'match_id': match.id, 'home_team_id': home_team_id,
                          'away_team_id': away_team_id})
    _queue_match_update(match, 'match_scheduled')
    db.session.commit()

    payload = _match_payload(match, league_name=league.name, location=match.location)
    notify.emit_many([
        notify.notification(admin_id, notify.MATCH_SCHEDULED, team_id, payload)
        for team_id in match.team_ids
        for admin_id in team_admin_ids(team_id)
    ])
    return match


def _can_view_match(user_id, match):
    if match.league and match.league.manager_id == user_id:
        return True
    return any(get_membership(team_id, user_id) for team_id in match.team_ids)


def match_submissions(user_id, match_id):
    match = get_match(match_id)
    if not _can_view_match(user_id, match):
        raise Forbidden('Only the two teams and the League Manager can see these scores')
    return ScoreSubmission.query.filter_by(season_match_id=match.id).order_by(
        ScoreSubmission.submitted_at.desc(), ScoreSubmission.id.desc()
    ).all()


def _can_view_league(user_id, league):
    if league.manager_id == user_id:
        return True
    return db.session.query(TeamMember.id).filter(
        TeamMember.user_id == user_id,
        TeamMember.team_id.in_([entry.team_id for entry in league.teams]),
    ).first() is not None


def dashboard(league_id, viewer_id=None):
    """Matches that still need a result recorded.

    ``pending``: open submissions, newest first. ``unrecorded``: past
    scheduled matches nobody has reported, most recently scheduled first.
    ``disputed``: unfinished matches whose reports disagreed and that have
    no new submission waiting.
    """
    league = get_league(league_id)
    if viewer_id is not None and not _can_view_league(viewer_id, league):
        raise Forbidden('Only league participants can view the scores dashboard')
    now = utcnow_naive()

    pending = db.session.query(ScoreSubmission).join(
        SeasonMatch, SeasonMatch.id == ScoreSubmission.season_match_id
    ).filter(
        SeasonMatch.league_id == league.id,
        ScoreSubmission.status == PENDING,
    ).order_by(ScoreSubmission.submitted_at.desc(), ScoreSubmission.id.desc()).all()

    any_submission = exists().where(ScoreSubmission.season_match_id == SeasonMatch.id)
    unrecorded = SeasonMatch.query.filter(
        SeasonMatch.league_id == league.id,
        SeasonMatch.status == SCHEDULED,
        SeasonMatch.scheduled_at < now,
        SeasonMatch.home_score.is_(None),
        SeasonMatch.away_score.is_(None),
        ~any_submission,
    ).order_by(SeasonMatch.scheduled_at.desc(), SeasonMatch.id.desc()).all()

    disputed_submission = exists().where(and_(
        ScoreSubmission.season_match_id == SeasonMatch.id,
        ScoreSubmission.status == DISPUTED,
    ))
    pending_submission = exists().where(and_(
        ScoreSubmission.season_match_id == SeasonMatch.id,
        ScoreSubmission.status == PENDING,
    ))
    disputed = SeasonMatch.query.filter(
        SeasonMatch.league_id == league.id,
        ~SeasonMatch.status.in_([COMPLETED, CANCELLED]),
        disputed_submission,
        ~pending_submission,
    ).order_by(SeasonMatch.scheduled_at.desc(), SeasonMatch.id.desc()).all()

    return {
        'pending': [
            {'submission': submission.to_dict(), 'match': submission.season_match.to_dict()}
            for submission in pending
        ],
        'unrecorded': [match.to_dict() for match in unrecorded],
        'disputed': [
            {
                'match': match.to_dict(),
                'submissions': [
                    submission.to_dict() for submission in sorted(
                        (s for s in match.submissions if s.status == DISPUTED),
                        key=lambda s: (s.submitted_at, s.id), reverse=True,
                    )
                ],
            }
            for match in disputed
        ],
    }
