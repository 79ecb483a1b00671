from flask import Flask, jsonify
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError
import os

load_dotenv()

from config import Config, BASE_DIR
from models import db, Event, Match
from blueprints import auth_bp, organizer_bp, team_bp, invites_bp, public_bp
from blueprints.auth import load_current_user
from blueprints.responses import error_response


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite:///'):
        os.makedirs(os.path.join(BASE_DIR, 'instance'), exist_ok=True)
        if app.config['SQLALCHEMY_DATABASE_URI'] == 'sqlite:///:memory:':
            app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {}

    db.init_app(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database initialized')

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(organizer_bp)
    app.register_blueprint(team_bp)
    app.register_blueprint(invites_bp)
    app.register_blueprint(public_bp)

    @app.before_request
    def before_request():
        """Load current user before every request to ANY route"""
        load_current_user()

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Resource not found.', 404, 'not_found')

    @app.errorhandler(SQLAlchemyError)
    def database_error(error):
        db.session.rollback()
        app.logger.error('Unhandled database error: %s', error)
        return error_response(str(error), 500, 'persistence_error')

    @app.route('/')
    def index():
        """Service summary with the live matches right now"""
        live_matches = Match.query.filter_by(status='in_progress').count()
        upcoming_events = Event.query.filter_by(status='scheduled').count()
        return jsonify({
            'name': 'SquadRoll',
            'upcoming_events': upcoming_events,
            'live_matches': live_matches,
        })

    return app


app = create_app()


if __name__ == "__main__":
    app.run(debug=True, port=5000)
