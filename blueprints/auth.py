from flask import Blueprint, jsonify, session, g, current_app
from functools import wraps
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
import pytz

from blueprints.responses import error_response, failure_response, payload, text
from context import SessionContext
from errors import ValidationFailed
from models import db, User, normalize_email

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

SELF_SERVICE_ROLES = ('organizer', 'team_manager')


# Helper function - load current user
def load_current_user():
    """Load user into g.current_user and build the request's session context."""
    if 'user_id' in session:
        g.current_user = db.session.get(User, session['user_id'])
    else:
        g.current_user = None
    g.session_ctx = SessionContext.from_user(g.current_user)


def _require_role(role: str | None, label: str):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not g.current_user:
                return error_response('Please log in to access this resource.', 401, 'unauthenticated')
            if role and g.current_user.role != role:
                return error_response(f'Please use {label} account to access this resource.', 403, 'forbidden')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


login_required = _require_role(None, 'a')
require_organizer = _require_role('organizer', 'an organizer')
require_team_manager = _require_role('team_manager', 'a team manager')


def check_user_uniqueness(username, email):
    """
    Check if username or email already exists in database.
    Returns list of errors. Requires Flask app context.
    """
    errors = []

    if User.query.filter_by(username=username).first():
        errors.append("Username already exists")

    if User.query.filter_by(email=normalize_email(email)).first():
        errors.append("Email already registered")

    return errors


def start_session(user: User) -> None:
    session.clear()
    session['user_id'] = user.id
    session['username'] = user.username
    session['role'] = user.role
    tz = pytz.timezone(current_app.config['APP_TIMEZONE'])
    session['logged_in_at'] = datetime.now(tz).isoformat()
    session.modified = True


@auth_bp.route('/register', methods=['POST'])
def register():
    """Self-service registration for organizers and team managers."""
    data = payload()
    username = text(data, 'username')
    email = text(data, 'email')
    password = text(data, 'password')
    role = text(data, 'role')

    # Validate format (no DB queries)
    errors = User.validate_format(username, email, password, role, roles=SELF_SERVICE_ROLES)

    # Check uniqueness (requires DB queries)
    if not errors:
        errors.extend(check_user_uniqueness(username, email))

    if errors:
        return failure_response(ValidationFailed.of(errors))

    user = User(username=username, email=email, role=role)
    user.set_password(password)

    try:
        db.session.add(user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        return error_response(f'Error during registration: {e}', 500, 'persistence_error')

    current_app.logger.info('Registered %s account %s', role, username)
    return jsonify({'user': user.to_dict()}), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = payload()
    username = text(data, 'username')
    password = text(data, 'password')

    user = User.query.filter_by(username=username).first()
    if not user or not user.check_password(password):
        return error_response('Invalid username or password.', 401, 'invalid_credentials')

    start_session(user)
    return jsonify({'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'message': 'You have been logged out.'})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'user': g.current_user.to_dict()})
