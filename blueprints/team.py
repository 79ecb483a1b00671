from flask import Blueprint, jsonify, g, current_app
from functools import wraps
from sqlalchemy.exc import SQLAlchemyError

import invitations
import roster
from blueprints.auth import require_team_manager
from blueprints.invites import invite_created_response, dispatch_response
from blueprints.responses import as_bool, error_response, failure_response, int_or_none, payload, text
from errors import ValidationFailed
from models import db, Athlete, Event, InviteToken, RosterEntry, Team, normalize_sex, parse_birth_date

team_bp = Blueprint('team', __name__, url_prefix='/team')


def require_team_ownership(f):
    """Require the current user to manage the target team."""

    @wraps(f)
    def decorated_function(team_id, *args, **kwargs):
        if not getattr(g, 'current_user', None):
            return error_response('Please log in to continue.', 401, 'unauthenticated')

        team = db.get_or_404(Team, team_id)

        if g.current_user.id != team.manager_id:
            return error_response('You do not have permission to manage this team.', 403, 'forbidden')

        g.team_context = team
        return f(team_id, *args, **kwargs)

    return decorated_function


@team_bp.route('/teams', methods=['GET'])
@require_team_manager
def my_teams():
    teams = (
        Team.query.filter_by(manager_id=g.current_user.id)
        .order_by(Team.created_at.desc())
        .all()
    )
    return jsonify({
        'teams': [
            dict(team.to_dict(), athlete_count=len(team.active_entries()))
            for team in teams
        ]
    })


@team_bp.route('/teams', methods=['POST'])
@require_team_manager
def create_team():
    """Team manager creates a new team."""
    name = text(payload(), 'name')
    if not name:
        return error_response('Team name is required.', 422, 'validation_failed')

    team = Team(name=name, manager_id=g.current_user.id, created_by=g.current_user.id)
    try:
        db.session.add(team)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return error_response(f'Error creating team: {e}', 500, 'persistence_error')

    current_app.logger.info('Team %s created by %s', team.id, g.current_user.id)
    return jsonify({'team': team.to_dict()}), 201


@team_bp.route('/teams/<int:team_id>/roster', methods=['GET'])
@require_team_ownership
def view_roster(team_id):
    team = g.team_context
    return jsonify({
        'team': team.to_dict(),
        'roster': [entry.to_dict() for entry in team.active_entries()],
    })


@team_bp.route('/teams/<int:team_id>/roster', methods=['POST'])
@require_team_ownership
def add_athlete(team_id):
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


@team_bp.route('/teams/<int:team_id>/roster/<int:athlete_id>', methods=['DELETE'])
@require_team_ownership
def remove_athlete(team_id, athlete_id):
    entry = RosterEntry.query.filter_by(team_id=team_id, athlete_id=athlete_id, active=True).first_or_404()
    result = roster.remove_from_roster(entry, g.session_ctx)
    if not result.ok:
        return failure_response(result)
    return jsonify({'entry': result.value.to_dict()})


@team_bp.route('/teams/<int:team_id>/invites', methods=['POST'])
@require_team_ownership
def invite_athlete(team_id):
    data = payload()
    result = invitations.issue(
        'athlete',
        data.get('email'),
        issuer_id=g.current_user.id,
        team_id=g.team_context.id,
    )
    if not result.ok:
        return failure_response(result)
    return invite_created_response(result.value, send=as_bool(data.get('send')))


@team_bp.route('/invites/<int:invite_id>/send', methods=['POST'])
@require_team_manager
def send_invite(invite_id):
    token = InviteToken.query.filter_by(id=invite_id, created_by=g.current_user.id).first_or_404()
    return dispatch_response(token)


@team_bp.route('/teams/<int:team_id>/registrations', methods=['POST'])
@require_team_ownership
def register_for_event(team_id):
    try:
        event_id = int_or_none(payload().get('event_id'))
    except (TypeError, ValueError):
        event_id = None
    if event_id is None:
        return error_response('event_id is required.', 422, 'validation_failed')

    event = db.get_or_404(Event, event_id)
    result = roster.register_team(g.team_context, event, g.session_ctx)
    if not result.ok:
        return failure_response(result)
    return jsonify({'registration': result.value.to_dict()}), 201


ATHLETE_FIELDS = ('name', 'email', 'birth_date', 'sex')


def _manages_athlete(athlete: Athlete) -> bool:
    if athlete.created_by == g.current_user.id:
        return True
    return athlete.current_team is not None and athlete.current_team.manager_id == g.current_user.id


def _athlete_form(athlete: Athlete) -> dict:
    return {
        'name': athlete.name or '',
        'email': athlete.email or '',
        'birth_date': athlete.birth_date.isoformat() if athlete.birth_date else '',
        'sex': athlete.sex or '',
    }


def _parse_athlete_field(field: str, value: str):
    if field == 'birth_date':
        return parse_birth_date(value)
    if field == 'sex':
        return normalize_sex(value)
    if field == 'email':
        return value or None
    return value


@team_bp.route('/athletes', methods=['GET'])
@require_team_manager
def my_athletes():
    """Athletes this manager registered or who play for one of their teams."""
    athletes = (
        Athlete.query.outerjoin(Team, Athlete.team_id == Team.id)
        .filter(db.or_(Athlete.created_by == g.current_user.id, Team.manager_id == g.current_user.id))
        .order_by(Athlete.name.asc())
        .all()
    )
    return jsonify({'athletes': [athlete.to_dict() for athlete in athletes]})


@team_bp.route('/athletes', methods=['POST'])
@require_team_manager
def create_athlete():
    data = payload()
    form = {field: text(data, field) for field in ATHLETE_FIELDS}
    errors = Athlete.validate_format(**form)
    if errors:
        return failure_response(ValidationFailed.of(errors))

    athlete = Athlete(
        created_by=g.current_user.id,
        **{field: _parse_athlete_field(field, value) for field, value in form.items()},
    )
    try:
        db.session.add(athlete)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return error_response(f'Error creating athlete: {e}', 500, 'persistence_error')

    current_app.logger.info('Athlete %s created by %s', athlete.id, g.current_user.id)
    return jsonify({'athlete': athlete.to_dict()}), 201


@team_bp.route('/athletes/<int:athlete_id>', methods=['PATCH'])
@require_team_manager
def update_athlete(athlete_id):
    athlete = db.get_or_404(Athlete, athlete_id)
    if not _manages_athlete(athlete):
        return error_response('You do not have permission to edit this athlete.', 403, 'forbidden')

    data = payload()
    submitted = [field for field in ATHLETE_FIELDS if field in data]
    form = _athlete_form(athlete)
    form.update({field: text(data, field) for field in submitted})
    errors = Athlete.validate_format(**form)
    if errors:
        return failure_response(ValidationFailed.of(errors))

    changes = {field: _parse_athlete_field(field, form[field]) for field in submitted}
    result = roster.update_athlete(athlete, changes, g.session_ctx)
    if not result.ok:
        return failure_response(result)
    return jsonify({'athlete': result.value.to_dict()})
