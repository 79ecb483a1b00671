"""
Integration tests for the organizer blueprint.
Events, registration decisions, manager invitations, roster overrides and scores.
"""
from datetime import date, timedelta

import pytest

import roster
from context import SessionContext
from models import db, Athlete, Event, InviteToken, Match, Team, current_time


def event_form(**overrides):
    start = current_time() + timedelta(days=10)
    form = {
        'name': 'Winter Games',
        'location': 'Arena 1',
        'start_at': start.isoformat() + 'Z',
        'end_at': (start + timedelta(days=1)).isoformat() + 'Z',
        'category': 'mixed',
        'min_age': 12,
        'max_age': 14,
        'cap_total': 10,
        'cap_male': 5,
        'cap_female': 5,
    }
    form.update(overrides)
    return form


class TestEventRoutes:
    def test_create_event(self, authenticated_organizer, organizer):
        response = authenticated_organizer.post('/organizer/events', json=event_form())

        assert response.status_code == 201
        event = Event.query.filter_by(name='Winter Games').one()
        assert event.organizer_id == organizer.id
        assert event.status == 'scheduled'
        assert (event.min_age, event.max_age, event.cap_total, event.cap_male) == (12, 14, 10, 5)

    def test_create_event_converts_offsets_to_utc(self, authenticated_organizer):
        response = authenticated_organizer.post('/organizer/events', json=event_form(
            start_at='2030-03-10T09:00:00-03:00',
            end_at='2030-03-10T18:00:00-03:00',
        ))

        assert response.status_code == 201
        assert response.get_json()['event']['start_at'] == '2030-03-10T12:00:00'

    def test_create_event_rejects_bad_settings(self, authenticated_organizer):
        response = authenticated_organizer.post('/organizer/events', json=event_form(
            category='female', min_age=16, max_age=12,
        ))

        messages = response.get_json()['error']['messages']
        assert response.status_code == 422
        assert 'Minimum age cannot be greater than maximum age' in messages
        assert 'Per-sex caps only apply to mixed events' in messages
        assert Event.query.count() == 0

    def test_create_event_rejects_bad_dates(self, authenticated_organizer):
        response = authenticated_organizer.post('/organizer/events', json=event_form(start_at='tomorrow'))
        assert response.status_code == 422

    def test_create_event_rejects_non_string_values(self, authenticated_organizer):
        numeric_date = authenticated_organizer.post('/organizer/events', json=event_form(start_at=20250601))
        numeric_name = authenticated_organizer.post('/organizer/events', json=event_form(name=2025))

        assert numeric_date.status_code == 422
        assert numeric_name.status_code == 422
        assert 'Event name is required' in numeric_name.get_json()['error']['messages']
        assert Event.query.count() == 0

    def test_team_manager_cannot_create_events(self, authenticated_team_manager):
        assert authenticated_team_manager.post('/organizer/events', json=event_form()).status_code == 403

    def test_list_only_own_events(self, authenticated_organizer, event, other_organizer, make_event):
        make_event(name='Foreign Cup', organizer_id=other_organizer.id)

        names = [e['name'] for e in authenticated_organizer.get('/organizer/events').get_json()['events']]
        assert names == ['Youth Cup']

    def test_status_moves_forward_only(self, authenticated_organizer, event):
        url = f'/organizer/events/{event.id}/status'
        assert authenticated_organizer.post(url, json={'status': 'in_progress'}).status_code == 200

        response = authenticated_organizer.post(url, json={'status': 'scheduled'})
        assert response.status_code == 422
        assert db.session.get(Event, event.id).status == 'in_progress'

    def test_status_requires_ownership(self, authenticated_organizer, other_organizer, make_event):
        foreign = make_event(name='Foreign Cup', organizer_id=other_organizer.id)
        response = authenticated_organizer.post(
            f'/organizer/events/{foreign.id}/status', json={'status': 'in_progress'}
        )
        assert response.status_code == 403


class TestEventEdits:
    def test_update_event_settings(self, authenticated_organizer, event):
        response = authenticated_organizer.patch(f'/organizer/events/{event.id}', json={
            'name': 'Youth Cup II',
            'cap_total': 5,
            'max_age': 18,
        })

        body = response.get_json()['event']
        assert response.status_code == 200
        assert body['name'] == 'Youth Cup II'
        db.session.expire_all()
        stored = db.session.get(Event, event.id)
        assert (stored.min_age, stored.max_age, stored.cap_total) == (15, 18, 5)
        assert stored.location is None

    def test_update_moves_schedule(self, authenticated_organizer, event):
        response = authenticated_organizer.patch(f'/organizer/events/{event.id}', json={
            'start_at': '2031-03-10T09:00:00-03:00',
            'end_at': '2031-03-12T18:00:00-03:00',
        })

        assert response.status_code == 200
        assert response.get_json()['event']['start_at'] == '2031-03-10T12:00:00'

    def test_update_rechecks_settings(self, authenticated_organizer, event):
        response = authenticated_organizer.patch(f'/organizer/events/{event.id}', json={'min_age': 20})

        assert response.status_code == 422
        assert 'Minimum age cannot be greater than maximum age' in response.get_json()['error']['messages']
        db.session.expire_all()
        assert db.session.get(Event, event.id).min_age == 15

    def test_update_rejects_end_before_start(self, authenticated_organizer, event):
        end_at = (event.start_at - timedelta(days=1)).isoformat() + 'Z'
        response = authenticated_organizer.patch(f'/organizer/events/{event.id}', json={'end_at': end_at})

        assert response.status_code == 422
        assert 'End must be on or after the start' in response.get_json()['error']['messages']

    def test_update_rejects_non_string_dates(self, authenticated_organizer, event):
        response = authenticated_organizer.patch(f'/organizer/events/{event.id}', json={'start_at': 20250601})
        assert response.status_code == 422

    def test_update_requires_ownership(self, authenticated_organizer, other_organizer, make_event):
        foreign = make_event(name='Foreign Cup', organizer_id=other_organizer.id)
        response = authenticated_organizer.patch(f'/organizer/events/{foreign.id}', json={'name': 'Mine'})

        assert response.status_code == 403
        assert db.session.get(Event, foreign.id).name == 'Foreign Cup'


class TestRegistrationDecisions:
    @pytest.fixture
    def pending(self, free_team, event, team_manager):
        return roster.register_team(free_team, event, SessionContext.from_user(team_manager)).value

    def test_list_registrations(self, authenticated_organizer, event, pending):
        body = authenticated_organizer.get(f'/organizer/events/{event.id}/registrations').get_json()
        assert [r['id'] for r in body['registrations']] == [pending.id]

    def test_approve(self, authenticated_organizer, pending, organizer):
        response = authenticated_organizer.post(
            f'/organizer/registrations/{pending.id}/decision', json={'approve': True}
        )

        body = response.get_json()
        assert response.status_code == 200
        assert body['registration']['status'] == 'approved'
        assert body['registration']['decided_by'] == organizer.id

    def test_reject_with_form_value(self, authenticated_organizer, pending):
        response = authenticated_organizer.post(
            f'/organizer/registrations/{pending.id}/decision', data={'approve': 'false'}
        )
        assert response.get_json()['registration']['status'] == 'rejected'

    def test_other_organizer_cannot_decide(self, flask_app, other_organizer, pending):
        client = flask_app.test_client()
        with client.session_transaction() as sess:
            sess['user_id'] = other_organizer.id

        response = client.post(f'/organizer/registrations/{pending.id}/decision', json={'approve': True})
        assert response.status_code == 403


class TestManagerInvites:
    def test_invite_manager(self, authenticated_organizer, organizer):
        response = authenticated_organizer.post('/organizer/invites/manager', json={
            'email': 'Coach@Example.com',
            'name': 'Coach Silva',
        })

        body = response.get_json()
        assert response.status_code == 201
        token = InviteToken.query.one()
        assert token.kind == 'manager'
        assert token.team_id is None
        assert token.created_by == organizer.id
        assert token.expires_at - token.created_at == timedelta(days=7)
        assert body['invite_link'] == f'https://squadroll.test/register/manager?token={token.token}'

    def test_invite_manager_requires_email(self, authenticated_organizer):
        response = authenticated_organizer.post('/organizer/invites/manager', json={'name': 'Nobody'})
        assert response.status_code == 422

    def test_failed_send_returns_link(self, authenticated_organizer):
        response = authenticated_organizer.post('/organizer/invites/manager', json={
            'email': 'coach@example.com',
            'send': True,
        })

        body = response.get_json()
        token = InviteToken.query.one()
        assert response.status_code == 502
        assert body['error']['code'] == 'dispatch_error'
        assert body['invite_link'] == f'https://squadroll.test/register/manager?token={token.token}'
        assert token.status == 'pending'

    def test_team_manager_cannot_invite_managers(self, authenticated_team_manager):
        response = authenticated_team_manager.post('/organizer/invites/manager', json={'email': 'a@b.com'})
        assert response.status_code == 403


class TestRosterOverride:
    def test_organizer_adds_after_start(self, authenticated_organizer, team, make_athlete, eligible_birth_date):
        team.event.advance_status('in_progress')
        db.session.commit()
        athlete = make_athlete(name='Late Signing', birth_date=eligible_birth_date)

        response = authenticated_organizer.post(
            f'/organizer/teams/{team.id}/roster', json={'athlete_id': athlete.id}
        )

        assert response.status_code == 201
        assert db.session.get(Team, team.id).roster()[0].name == 'Late Signing'

    def test_override_still_checks_eligibility(self, authenticated_organizer, team, make_athlete):
        athlete = make_athlete(name='Veteran', birth_date=date(1980, 1, 1))
        response = authenticated_organizer.post(
            f'/organizer/teams/{team.id}/roster', json={'athlete_id': athlete.id}
        )
        assert response.status_code == 422

    def test_override_limited_to_own_events(self, flask_app, other_organizer, team, make_athlete):
        client = flask_app.test_client()
        with client.session_transaction() as sess:
            sess['user_id'] = other_organizer.id

        response = client.post(f'/organizer/teams/{team.id}/roster', json={'athlete_id': make_athlete().id})
        assert response.status_code == 403


class TestMatches:
    @pytest.fixture
    def rival(self, other_manager, event):
        team = Team(
            name='Rivals',
            manager_id=other_manager.id,
            created_by=other_manager.id,
            event_id=event.id,
        )
        db.session.add(team)
        db.session.commit()
        return team

    def test_create_match_and_score(self, authenticated_organizer, event, team, rival):
        response = authenticated_organizer.post(f'/organizer/events/{event.id}/matches', json={
            'home_team_id': team.id,
            'away_team_id': rival.id,
            'scheduled_at': event.start_at.isoformat(),
            'venue': 'Court A',
        })

        assert response.status_code == 201
        match_id = response.get_json()['match']['id']
        assert response.get_json()['match']['versus'] == 'Test Team vs Rivals'

        response = authenticated_organizer.post(f'/organizer/matches/{match_id}/score', json={
            'home_score': 3,
            'away_score': 1,
            'status': 'in_progress',
        })

        body = response.get_json()['match']
        assert response.status_code == 200
        assert (body['home_score'], body['away_score'], body['status']) == (3, 1, 'in_progress')

    def test_match_teams_must_be_in_event(self, authenticated_organizer, event, team, free_team):
        response = authenticated_organizer.post(f'/organizer/events/{event.id}/matches', json={
            'home_team_id': team.id,
            'away_team_id': free_team.id,
            'scheduled_at': event.start_at.isoformat(),
        })

        assert response.status_code == 422
        assert Match.query.count() == 0

    def test_team_cannot_play_itself(self, authenticated_organizer, event, team):
        response = authenticated_organizer.post(f'/organizer/events/{event.id}/matches', json={
            'home_team_id': team.id,
            'away_team_id': team.id,
            'scheduled_at': event.start_at.isoformat(),
        })
        assert 'A team cannot play against itself' in response.get_json()['error']['messages']

    def test_negative_score_rejected(self, authenticated_organizer, event, team, rival):
        match = Match(event_id=event.id, home_team_id=team.id, away_team_id=rival.id, scheduled_at=event.start_at)
        db.session.add(match)
        db.session.commit()

        response = authenticated_organizer.post(f'/organizer/matches/{match.id}/score', json={'home_score': -1})
        assert response.status_code == 422


class TestRosterRemovalOverride:
    def test_organizer_removes_after_start(self, authenticated_organizer, team, make_athlete, seat_athlete):
        athlete = make_athlete(name='Injured')
        seat_athlete(team, athlete)
        team.event.advance_status('in_progress')
        db.session.commit()

        response = authenticated_organizer.delete(f'/organizer/teams/{team.id}/roster/{athlete.id}')

        assert response.status_code == 200
        assert response.get_json()['entry']['active'] is False
        db.session.expire_all()
        assert db.session.get(Team, team.id).roster() == []
        assert db.session.get(Athlete, athlete.id).team_id is None

    def test_remove_unknown_entry(self, authenticated_organizer, team):
        assert authenticated_organizer.delete(f'/organizer/teams/{team.id}/roster/999').status_code == 404

    def test_removal_limited_to_own_events(self, flask_app, other_organizer, team, make_athlete, seat_athlete):
        athlete = make_athlete()
        seat_athlete(team, athlete)
        client = flask_app.test_client()
        with client.session_transaction() as sess:
            sess['user_id'] = other_organizer.id

        response = client.delete(f'/organizer/teams/{team.id}/roster/{athlete.id}')

        assert response.status_code == 403
        assert db.session.get(Team, team.id).roster()[0].id == athlete.id
