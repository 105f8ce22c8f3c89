"""Tests for season matches and two-sided score reconciliation."""
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from grudge.app import db
from grudge.models import Notification, ScoreSubmission, SeasonMatch
from grudge.time_utils import utcnow_naive


def _submit(client, setup, side, home_score, away_score, **extra):
    body = {'home_score': home_score, 'away_score': away_score}
    body.update(extra)
    return client.post(f"/api/matches/{setup['match']['id']}/scores", json=body,
                       headers=setup[side]['headers'])


def _submissions(client, setup):
    res = client.get(f"/api/matches/{setup['match']['id']}/scores",
                     headers=setup['manager']['headers'])
    return res.get_json()['submissions']


def test_matching_reports_complete_the_match(client, league_setup):
    res = _submit(client, league_setup, 'home', 3, 1)
    assert res.status_code == 200
    assert res.get_json()['outcome'] == 'pending'
    assert res.get_json()['match']['status'] == 'SCHEDULED'

    res = _submit(client, league_setup, 'away', 3, 1)
    assert res.status_code == 200
    body = res.get_json()
    assert body['outcome'] == 'agreed'
    assert body['match']['status'] == 'COMPLETED'
    assert (body['match']['home_score'], body['match']['away_score']) == (3, 1)
    assert body['match']['winner_team_id'] == league_setup['home_team']['id']

    statuses = [s['status'] for s in _submissions(client, league_setup)]
    assert statuses == ['AGREED', 'AGREED']
    assert ScoreSubmission.query.filter_by(status='PENDING').count() == 0


def test_mismatched_reports_are_disputed(client, league_setup):
    _submit(client, league_setup, 'home', 3, 1)
    res = _submit(client, league_setup, 'away', 1, 3, notes='We won this one')
    body = res.get_json()
    assert body['outcome'] == 'disputed'
    assert body['match']['status'] == 'SCHEDULED'
    assert body['match']['home_score'] is None
    assert body['submission']['dispute_reason'] == 'We won this one'

    submissions = _submissions(client, league_setup)
    assert [s['status'] for s in submissions] == ['DISPUTED', 'DISPUTED']

    for user in (league_setup['home'], league_setup['away']):
        assert Notification.query.filter_by(
            user_id=user['id'], notif_type='season_match.score_disputed'
        ).count() == 1
    assert Notification.query.filter_by(
        user_id=league_setup['manager']['id'], notif_type='league.match_score_disputed'
    ).count() == 1


def test_latest_report_from_a_side_replaces_its_pending_one(client, league_setup):
    first = _submit(client, league_setup, 'home', 3, 1).get_json()['submission']
    second = _submit(client, league_setup, 'home', 2, 1).get_json()
    assert second['outcome'] == 'replaced'
    assert second['submission']['id'] == first['id']
    assert ScoreSubmission.query.filter_by(season_match_id=league_setup['match']['id']).count() == 1

    res = _submit(client, league_setup, 'away', 2, 1)
    assert res.get_json()['outcome'] == 'agreed'
    assert (res.get_json()['match']['home_score'], res.get_json()['match']['away_score']) == (2, 1)


def test_replacement_retires_the_stale_submitted_notification(client, league_setup):
    _submit(client, league_setup, 'home', 3, 1)
    _submit(client, league_setup, 'home', 2, 1)
    notes = Notification.query.filter_by(
        user_id=league_setup['away']['id'], notif_type='season_match.score_submitted'
    ).order_by(Notification.id).all()
    assert [n.read for n in notes] == [True, False]
    assert notes[-1].data['home_score'] == 2


def test_agreement_retires_submitted_notification_and_notifies_everyone(client, league_setup):
    _submit(client, league_setup, 'home', 0, 0)
    note = Notification.query.filter_by(
        user_id=league_setup['away']['id'], notif_type='season_match.score_submitted'
    ).one()
    assert note.read is False

    res = _submit(client, league_setup, 'away', 0, 0)
    assert res.get_json()['match']['winner_team_id'] is None
    assert db.session.get(Notification, note.id).read is True
    for user in (league_setup['home'], league_setup['away']):
        assert Notification.query.filter_by(
            user_id=user['id'], notif_type='season_match.score_confirmed'
        ).count() == 1
    assert Notification.query.filter_by(
        user_id=league_setup['manager']['id'], notif_type='league.match_score_confirmed'
    ).count() == 1


def test_completed_match_rejects_new_reports(client, league_setup):
    _submit(client, league_setup, 'home', 1, 0)
    _submit(client, league_setup, 'away', 1, 0)
    res = _submit(client, league_setup, 'home', 5, 0)
    assert res.status_code == 400
    assert res.get_json()['kind'] == 'invalid'


def test_new_report_can_follow_a_dispute(client, league_setup):
    _submit(client, league_setup, 'home', 3, 1)
    _submit(client, league_setup, 'away', 1, 3)
    res = _submit(client, league_setup, 'home', 2, 2)
    assert res.get_json()['outcome'] == 'pending'
    res = _submit(client, league_setup, 'away', 2, 2)
    assert res.get_json()['outcome'] == 'agreed'


def test_only_admins_of_the_two_teams_may_report(client, league_setup, register, join_team):
    outsider = register('stranger')
    res = client.post(f"/api/matches/{league_setup['match']['id']}/scores", json={
        'home_score': 1, 'away_score': 0,
    }, headers=outsider['headers'])
    assert res.status_code == 403

    player = register('winger')
    join_team(league_setup['home_team'], league_setup['home'], player)
    res = client.post(f"/api/matches/{league_setup['match']['id']}/scores", json={
        'home_score': 1, 'away_score': 0,
    }, headers=player['headers'])
    assert res.status_code == 403


def test_explicit_team_must_play_the_match(client, league_setup, create_team):
    other = create_team(league_setup['home'], name='Reserves')
    res = _submit(client, league_setup, 'home', 1, 0, team_id=other['id'])
    assert res.status_code == 403


@pytest.mark.parametrize('home_score,away_score', [
    (-1, 0), ('three', 1), (1.5, 0), (1000, 0), (None, 2), (True, 1),
])
def test_scores_must_be_small_non_negative_integers(client, league_setup, home_score, away_score):
    res = _submit(client, league_setup, 'home', home_score, away_score)
    assert res.status_code == 400
    assert ScoreSubmission.query.count() == 0


def test_numeric_strings_are_accepted(client, league_setup):
    res = _submit(client, league_setup, 'home', '4', '2')
    assert res.status_code == 200
    assert res.get_json()['submission']['home_score'] == 4


# ── Confirm / dispute ─────────────────────────────────────────────────

def _respond(client, setup, side, submission_id, action, reason=None):
    return client.post(
        f"/api/matches/{setup['match']['id']}/scores/{submission_id}",
        json={'action': action, 'dispute_reason': reason},
        headers=setup[side]['headers'],
    )


def test_opponent_confirmation_completes_the_match(client, league_setup):
    submission_id = _submit(client, league_setup, 'home', 2, 3).get_json()['submission']['id']

    res = _respond(client, league_setup, 'home', submission_id, 'confirm')
    assert res.status_code == 403

    res = _respond(client, league_setup, 'away', submission_id, 'confirm')
    assert res.status_code == 200
    assert res.get_json()['outcome'] == 'agreed'
    match = db.session.get(SeasonMatch, league_setup['match']['id'])
    assert (match.status, match.winner_team_id) == ('COMPLETED', league_setup['away_team']['id'])


def test_dispute_requires_a_reason(client, league_setup):
    submission_id = _submit(client, league_setup, 'home', 2, 3).get_json()['submission']['id']
    res = _respond(client, league_setup, 'away', submission_id, 'dispute')
    assert res.status_code == 400

    res = _respond(client, league_setup, 'away', submission_id, 'dispute', 'Game ended 2-2')
    assert res.status_code == 200
    body = res.get_json()
    assert body['submission']['status'] == 'DISPUTED'
    assert body['submission']['dispute_reason'] == 'Game ended 2-2'
    assert body['match']['status'] == 'SCHEDULED'

    res = _respond(client, league_setup, 'away', submission_id, 'confirm')
    assert res.status_code == 400


def test_unknown_response_action(client, league_setup):
    submission_id = _submit(client, league_setup, 'home', 2, 3).get_json()['submission']['id']
    res = _respond(client, league_setup, 'away', submission_id, 'shrug')
    assert res.status_code == 400


# ── Matches & dashboard ───────────────────────────────────────────────

def test_create_match_requires_manager_and_league_teams(client, league_setup, create_team):
    league_id = league_setup['league']['id']
    body = {
        'home_team_id': league_setup['home_team']['id'],
        'away_team_id': league_setup['away_team']['id'],
        'scheduled_at': '2030-05-01T18:00:00Z',
    }
    res = client.post(f'/api/leagues/{league_id}/matches', json=body,
                      headers=league_setup['home']['headers'])
    assert res.status_code == 403

    res = client.post(f'/api/leagues/{league_id}/matches', json=dict(body, away_team_id=body['home_team_id']),
                      headers=league_setup['manager']['headers'])
    assert res.status_code == 400

    outsider_team = create_team(league_setup['home'], name='Not In League')
    res = client.post(f'/api/leagues/{league_id}/matches', json=dict(body, away_team_id=outsider_team['id']),
                      headers=league_setup['manager']['headers'])
    assert res.status_code == 400

    res = client.post(f'/api/leagues/{league_id}/matches', json=dict(body, scheduled_at='soon'),
                      headers=league_setup['manager']['headers'])
    assert res.status_code == 400

    res = client.post(f'/api/leagues/{league_id}/matches', json=body,
                      headers=league_setup['manager']['headers'])
    assert res.status_code == 201
    assert res.get_json()['match']['scheduled_at'] == '2030-05-01T18:00:00'


def _add_match(league_setup, days_ago):
    match = SeasonMatch(
        league_id=league_setup['league']['id'],
        home_team_id=league_setup['home_team']['id'],
        away_team_id=league_setup['away_team']['id'],
        scheduled_at=utcnow_naive() - timedelta(days=days_ago),
        status='SCHEDULED',
    )
    db.session.add(match)
    db.session.commit()
    return match.id


def test_dashboard_lists_pending_unrecorded_and_disputed(client, league_setup):
    league_id = league_setup['league']['id']
    older = _add_match(league_setup, 5)
    newer = _add_match(league_setup, 2)
    future = _add_match(league_setup, -3)
    disputed = _add_match(league_setup, 4)

    client.post(f'/api/matches/{disputed}/scores', json={'home_score': 1, 'away_score': 0},
                headers=league_setup['home']['headers'])
    client.post(f'/api/matches/{disputed}/scores', json={'home_score': 0, 'away_score': 1},
                headers=league_setup['away']['headers'])
    _submit(client, league_setup, 'home', 3, 1)

    res = client.get(f'/api/leagues/{league_id}/scores-dashboard',
                     headers=league_setup['manager']['headers'])
    assert res.status_code == 200
    body = res.get_json()

    assert [p['match']['id'] for p in body['pending']] == [league_setup['match']['id']]
    assert body['pending'][0]['submission']['submitted_by'] == 'Homeadmin'
    assert body['pending'][0]['submission']['submitting_team'] == 'Home FC'

    unrecorded = [m['id'] for m in body['unrecorded']]
    assert unrecorded == [newer, older]
    assert future not in unrecorded

    assert [d['match']['id'] for d in body['disputed']] == [disputed]
    assert len(body['disputed'][0]['submissions']) == 2


def test_dashboard_is_limited_to_league_participants(client, league_setup, register):
    league_id = league_setup['league']['id']
    res = client.get(f'/api/leagues/{league_id}/scores-dashboard',
                     headers=register('nosy')['headers'])
    assert res.status_code == 403
    res = client.get(f'/api/leagues/{league_id}/scores-dashboard',
                     headers=league_setup['away']['headers'])
    assert res.status_code == 200


def test_pending_submissions_are_unique_in_the_database(app, league_setup):
    for side in ('home_team', 'away_team'):
        db.session.add(ScoreSubmission(
            season_match_id=league_setup['match']['id'],
            submitting_team_id=league_setup[side]['id'],
            submitted_by_id=league_setup['manager']['id'],
            home_score=1, away_score=0, status='PENDING',
        ))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_replacement_cannot_overwrite_an_agreed_report(client, league_setup, monkeypatch):
    from grudge.services import scores

    match_id = league_setup['match']['id']
    first = _submit(client, league_setup, 'home', 3, 1).get_json()['submission']
    real_replace = scores._replace_submission

    def _opponent_agrees_first(user_id, match, pending, *args):
        scores.submit_score(league_setup['away']['id'], match.id, 3, 1)
        return real_replace(user_id, match, pending, *args)

    monkeypatch.setattr(scores, '_replace_submission', _opponent_agrees_first)
    res = _submit(client, league_setup, 'home', 0, 5)
    assert res.status_code == 409
    assert res.get_json()['kind'] == 'conflict'

    submission = db.session.get(ScoreSubmission, first['id'])
    assert (submission.status, submission.home_score, submission.away_score) == ('AGREED', 3, 1)
    match = db.session.get(SeasonMatch, match_id)
    assert (match.status, match.home_score, match.away_score) == ('COMPLETED', 3, 1)
