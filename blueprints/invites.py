"""Public invitation endpoints: inspect a token and redeem it by registering."""

from flask import Blueprint, jsonify, request, current_app
from sqlalchemy.exc import SQLAlchemyError

import invitations
import roster
from blueprints.auth import check_user_uniqueness, start_session
from blueprints.responses import error_response, failure_response, payload, text
from context import SessionContext
from errors import PersistenceError, ValidationFailed
from models import db, Athlete, User, current_time, parse_birth_date

invites_bp = Blueprint('invites', __name__)


def invite_created_response(token, send: bool = False):
    """201 for a freshly issued token, optionally emailing it right away.

    A failed send answers 502 but still carries the invite and its link.
    """
    base_url = current_app.config['APP_BASE_URL']
    link, dispatch = invitations.send_invitation(token, base_url) if send else (
        invitations.build_invite_link(base_url, token), None
    )
    if not link.ok:
        return failure_response(link)

    body = {'invite': token.to_dict(), 'invite_link': link.value}
    if dispatch is None:
        return jsonify(body), 201
    if not dispatch.ok:
        # The token stays valid; the inviter can share the link by hand.
        return failure_response(dispatch, **body)
    body['dispatch'] = {'sent': True}
    return jsonify(body), 201


def dispatch_response(token):
    """(Re)send an existing invitation; on failure hand back the link to share by hand."""
    if not invitations.is_redeemable(token, current_time()):
        return error_response('Only pending, unexpired invitations can be sent.', 409, 'not_redeemable')

    link, dispatch = invitations.send_invitation(token, current_app.config['APP_BASE_URL'])
    if not link.ok:
        return failure_response(link)
    if not dispatch.ok:
        return failure_response(dispatch, invite_link=link.value)
    return jsonify({'sent': True, 'invite_link': link.value})


def _token_for(kind: str):
    raw = request.args.get('token') or payload().get('token')
    token = invitations.find_token(raw)
    if token is None or token.kind != kind:
        return None
    return token


@invites_bp.route('/invites/<string:raw_token>')
def inspect_invite(raw_token):
    token = invitations.find_token(raw_token)
    if token is None:
        return error_response('Invalid invitation.', 404, 'not_found')
    now = current_time()
    return jsonify({
        'invite': token.to_dict(now),
        'redeemable': invitations.is_redeemable(token, now),
    })


@invites_bp.route('/register/athlete', methods=['POST'])
def register_athlete():
    """Complete an athlete invitation: create the athlete, join the roster, burn the token."""
    token = _token_for('athlete')
    if token is None:
        return error_response('Invalid invitation.', 404, 'not_found')

    now = current_time()
    check = invitations.redeem(token, now)
    if not check.ok:
        return failure_response(check)

    data = payload()
    name = text(data, 'name')
    email = text(data, 'email')
    errors = Athlete.validate_format(name, token.email, text(data, 'birth_date'), text(data, 'sex'))
    if email and not invitations.email_matches(token, email):
        errors.append('Email does not match the invitation')
    if errors:
        return failure_response(ValidationFailed.of(errors))

    team = token.team
    athlete = Athlete(
        name=name,
        email=token.email,
        birth_date=parse_birth_date(text(data, 'birth_date')),
        sex=text(data, 'sex'),
        created_by=token.created_by,
    )
    db.session.add(athlete)

    ctx = SessionContext(user_id=None, role='athlete', email=token.email)
    result = roster.add_to_roster(team, athlete, ctx, now=now, commit=False)
    if not result.ok:
        db.session.rollback()
        return failure_response(result)

    redemption = invitations.complete_redemption(token, now)
    if not redemption.ok:
        db.session.rollback()
        return failure_response(redemption)

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error('Athlete registration failed: %s', e)
        return failure_response(PersistenceError(str(e)))

    current_app.logger.info('Invitation %s redeemed by athlete %s', token.id, athlete.id)
    return jsonify({'athlete': athlete.to_dict(), 'team': team.to_dict()}), 201


@invites_bp.route('/register/manager', methods=['POST'])
def register_manager():
    """Complete a manager invitation by creating a team manager account."""
    token = _token_for('manager')
    if token is None:
        return error_response('Invalid invitation.', 404, 'not_found')

    now = current_time()
    check = invitations.redeem(token, now)
    if not check.ok:
        return failure_response(check)

    data = payload()
    username = text(data, 'username')
    password = text(data, 'password')

    errors = User.validate_format(username, token.email, password, 'team_manager')
    if not errors:
        errors.extend(check_user_uniqueness(username, token.email))
    if errors:
        return failure_response(ValidationFailed.of(errors))

    user = User(username=username, email=token.email, role='team_manager')
    user.set_password(password)

    try:
        db.session.add(user)
        db.session.flush()
        redemption = invitations.complete_redemption(token, now)
        if not redemption.ok:
            db.session.rollback()
            return failure_response(redemption)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error('Manager registration failed: %s', e)
        return failure_response(PersistenceError(str(e)))

    start_session(user)
    current_app.logger.info('Invitation %s redeemed by manager %s', token.id, user.id)
    return jsonify({'user': user.to_dict()}), 201
