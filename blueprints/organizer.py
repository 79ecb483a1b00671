from flask import Blueprint, jsonify, g, current_app
from functools import wraps
from sqlalchemy.exc import SQLAlchemyError

import invitations
import roster
from blueprints.auth import require_organizer
from blueprints.invites import invite_created_response
from blueprints.responses import as_bool, error_response, failure_response, int_or_none, payload, text
from errors import ValidationFailed
from models import (
    db,
    Athlete,
    Event,
    EVENT_STATUSES,
    Match,
    Registration,
    RosterEntry,
    Team,
    normalize_sex,
    parse_instant,
)

organizer_bp = Blueprint('organizer', __name__, url_prefix='/organizer')

EVENT_CAP_FIELDS = ('min_age', 'max_age', 'cap_total', 'cap_male', 'cap_female')


def require_event_access(f):
    """Require the organizer to own the event"""
    @wraps(f)
    def decorated_function(event_id, *args, **kwargs):
        event = db.get_or_404(Event, event_id)
        if event.organizer_id != g.current_user.id:
            return error_response('You do not have access to this event.', 403, 'forbidden')
        g.event_context = event
        return f(event_id, *args, **kwargs)
    return decorated_function


def _commit(message: str):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error('%s: %s', message, e)
        return error_response(f'{message}: {e}', 500, 'persistence_error')
    return None


@organizer_bp.route('/events', methods=['GET'])
@require_organizer
def my_events():
    events = (
        Event.query.filter_by(organizer_id=g.current_user.id)
        .order_by(Event.start_at.asc())
        .all()
    )
    return jsonify({'events': [event.to_dict() for event in events]})


def _event_settings(data: dict, event: Event | None = None):
    """Merge submitted event fields over ``event``'s current values.

    Returns ``(values, errors)``; fields missing from ``data`` keep their
    current value, or their default when creating.
    """
    def current(field, default=None):
        return getattr(event, field) if event is not None else default

    try:
        start_at = parse_instant(data['start_at']) if 'start_at' in data else current('start_at')
        end_at = parse_instant(data['end_at']) if 'end_at' in data else current('end_at')
        limits = {
            field: int_or_none(data[field]) if field in data else current(field)
            for field in EVENT_CAP_FIELDS
        }
        category = normalize_sex(text(data, 'category')) if 'category' in data else current('category')
    except (TypeError, ValueError):
        return None, ['Dates must be ISO-8601 and limits must be whole numbers']

    values = {
        'name': text(data, 'name') if 'name' in data else current('name', ''),
        'location': (text(data, 'location') or None) if 'location' in data else current('location'),
        'start_at': start_at,
        'end_at': end_at,
        'category': category or 'mixed',
        **limits,
    }
    errors = Event.validate_format(
        values['name'], start_at, end_at, values['category'], **limits
    )
    return values, errors


@organizer_bp.route('/events', methods=['POST'])
@require_organizer
def create_event():
    """Create a new event with its eligibility settings"""
    values, errors = _event_settings(payload())
    if errors:
        return failure_response(ValidationFailed.of(errors))

    event = Event(status='scheduled', organizer_id=g.current_user.id, **values)
    db.session.add(event)
    failed = _commit('Error creating event')
    if failed:
        return failed

    current_app.logger.info('Event %s created by %s', event.id, g.current_user.id)
    return jsonify({'event': event.to_dict()}), 201


@organizer_bp.route('/events/<int:event_id>', methods=['PATCH'])
@require_organizer
@require_event_access
def update_event(event_id):
    """Edit an event's schedule and eligibility settings; status has its own route."""
    event = g.event_context
    values, errors = _event_settings(payload(), event)
    if errors:
        return failure_response(ValidationFailed.of(errors))

    # start_at before end_at so the end-after-start guard sees the new start
    for field in ('start_at', 'end_at', 'name', 'location', 'category') + EVENT_CAP_FIELDS:
        setattr(event, field, values[field])

    failed = _commit('Error updating event')
    if failed:
        return failed

    current_app.logger.info('Event %s updated by %s', event.id, g.current_user.id)
    return jsonify({'event': event.to_dict()})


@organizer_bp.route('/events/<int:event_id>/status', methods=['POST'])
@require_organizer
@require_event_access
def update_event_status(event_id):
    event = g.event_context
    new_status = text(payload(), 'status')
    if new_status not in EVENT_STATUSES:
        return failure_response(ValidationFailed.of([f'Status must be one of {", ".join(EVENT_STATUSES)}']))

    try:
        event.advance_status(new_status)
    except ValueError as e:
        return failure_response(ValidationFailed.of([str(e)]))

    failed = _commit('Error updating event status')
    if failed:
        return failed
    return jsonify({'event': event.to_dict()})


@organizer_bp.route('/events/<int:event_id>/registrations', methods=['GET'])
@require_organizer
@require_event_access
def event_registrations(event_id):
    registrations = (
        Registration.query.filter_by(event_id=event_id)
        .order_by(Registration.created_at.asc())
        .all()
    )
    return jsonify({'registrations': [r.to_dict() for r in registrations]})


@organizer_bp.route('/registrations/<int:registration_id>/decision', methods=['POST'])
@require_organizer
def decide_registration(registration_id):
    registration = db.get_or_404(Registration, registration_id)
    result = roster.decide_registration(registration, as_bool(payload().get('approve')), g.session_ctx)
    if not result.ok:
        return failure_response(result)
    return jsonify({'registration': result.value.to_dict()})


@organizer_bp.route('/invites/manager', methods=['POST'])
@require_organizer
def invite_manager():
    data = payload()
    result = invitations.issue(
        'manager',
        data.get('email'),
        issuer_id=g.current_user.id,
        invitee_name=data.get('name'),
    )
    if not result.ok:
        return failure_response(result)
    return invite_created_response(result.value, send=as_bool(data.get('send')))


def require_team_event_access(f):
    """Require the team to be bound to one of the organizer's events"""
    @wraps(f)
    def decorated_function(team_id, *args, **kwargs):
        team = db.get_or_404(Team, team_id)
        if team.event is None or team.event.organizer_id != g.current_user.id:
            return error_response('You do not have access to this team.', 403, 'forbidden')
        g.team_context = team
        return f(team_id, *args, **kwargs)
    return decorated_function


@organizer_bp.route('/teams/<int:team_id>/roster', methods=['POST'])
@require_organizer
@require_team_event_access
def add_athlete(team_id):
    """Organizers may change rosters even after their event has started."""
    try:
        athlete_id = int_or_none(payload().get('athlete_id'))
    except (TypeError, ValueError):
        athlete_id = None
    if athlete_id is None:
        return error_response('athlete_id is required.', 422, 'validation_failed')

    athlete = db.get_or_404(Athlete, athlete_id)
    result = roster.add_to_roster(g.team_context, athlete, g.session_ctx)
    if not result.ok:
        return failure_response(result)
    return jsonify({'entry': result.value.to_dict()}), 201


@organizer_bp.route('/teams/<int:team_id>/roster/<int:athlete_id>', methods=['DELETE'])
@require_organizer
@require_team_event_access
def remove_athlete(team_id, athlete_id):
    entry = RosterEntry.query.filter_by(team_id=team_id, athlete_id=athlete_id, active=True).first_or_404()
    result = roster.remove_from_roster(entry, g.session_ctx)
    if not result.ok:
        return failure_response(result)
    return jsonify({'entry': result.value.to_dict()})


@organizer_bp.route('/events/<int:event_id>/matches', methods=['POST'])
@require_organizer
@require_event_access
def create_match(event_id):
    data = payload()
    try:
        home_team_id = int_or_none(data.get('home_team_id'))
        away_team_id = int_or_none(data.get('away_team_id'))
        scheduled_at = parse_instant(data.get('scheduled_at'))
    except (TypeError, ValueError):
        return failure_response(ValidationFailed.of(['Invalid team ids or schedule']))

    errors = []
    if home_team_id is None or away_team_id is None or scheduled_at is None:
        errors.append('Both teams and a schedule are required')
    elif home_team_id == away_team_id:
        errors.append('A team cannot play against itself')
    else:
        for team_id in (home_team_id, away_team_id):
            team = db.session.get(Team, team_id)
            if team is None or team.event_id != event_id:
                errors.append(f'Team {team_id} is not registered for this event')
    if errors:
        return failure_response(ValidationFailed.of(errors))

    match = Match(
        event_id=event_id,
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        scheduled_at=scheduled_at,
        venue=text(data, 'venue') or None,
        status='scheduled',
    )
    db.session.add(match)
    failed = _commit('Error creating match')
    if failed:
        return failed
    return jsonify({'match': match.to_dict()}), 201


@organizer_bp.route('/matches/<int:match_id>/score', methods=['POST'])
@require_organizer
def update_score(match_id):
    match = db.get_or_404(Match, match_id)
    if match.event.organizer_id != g.current_user.id:
        return error_response('You do not have access to this match.', 403, 'forbidden')

    data = payload()
    try:
        home_score = int_or_none(data.get('home_score'))
        away_score = int_or_none(data.get('away_score'))
    except (TypeError, ValueError):
        return failure_response(ValidationFailed.of(['Scores must be whole numbers']))
    status = text(data, 'status') or match.status

    errors = []
    if status not in EVENT_STATUSES:
        errors.append(f'Status must be one of {", ".join(EVENT_STATUSES)}')
    for score in (home_score, away_score):
        if score is not None and score < 0:
            errors.append('Scores cannot be negative')
    if errors:
        return failure_response(ValidationFailed.of(errors))

    if home_score is not None:
        match.home_score = home_score
    if away_score is not None:
        match.away_score = away_score
    match.status = status

    failed = _commit('Error updating score')
    if failed:
        return failed
    return jsonify({'match': match.to_dict()})
