import pytest
from app import create_app
from models import db, User, Event, Team, Athlete, RosterEntry, current_time
from datetime import date, timedelta


@pytest.fixture
def flask_app():
    """Create test application with in-memory SQLite database"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret-key',
        'RESEND_API_KEY': None,
        'MAIL_FROM_ADDRESS': 'SquadRoll <invites@squadroll.test>',
        'APP_BASE_URL': 'https://squadroll.test',
        'APP_TIMEZONE': 'America/Sao_Paulo',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(flask_app):
    """Test client"""
    return flask_app.test_client()


def _make_user(username, email, role, password='Test@1234'):
    user = User(username=username, email=email, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def organizer(flask_app):
    return _make_user('test_organizer', 'organizer@test.com', 'organizer')


@pytest.fixture
def other_organizer(flask_app):
    return _make_user('other_organizer', 'other.organizer@test.com', 'organizer')


@pytest.fixture
def team_manager(flask_app):
    return _make_user('test_manager', 'manager@test.com', 'team_manager', 'Manager@123')


@pytest.fixture
def other_manager(flask_app):
    return _make_user('other_manager', 'other.manager@test.com', 'team_manager')


@pytest.fixture
def make_event(flask_app, organizer):
    """Factory for events; starts 30 days from now unless told otherwise."""
    def factory(**overrides):
        start_at = overrides.pop('start_at', current_time() + timedelta(days=30))
        values = {
            'name': 'Test Cup',
            'start_at': start_at,
            'end_at': overrides.pop('end_at', start_at + timedelta(days=2)),
            'status': 'scheduled',
            'category': 'mixed',
            'organizer_id': organizer.id,
        }
        values.update(overrides)
        event = Event(**values)
        db.session.add(event)
        db.session.commit()
        return event
    return factory


@pytest.fixture
def event(make_event):
    """Open mixed event for 15-17 year olds with a roster cap of 3"""
    return make_event(name='Youth Cup', min_age=15, max_age=17, cap_total=3)


@pytest.fixture
def started_event(make_event):
    return make_event(
        name='Started Cup',
        start_at=current_time() - timedelta(days=1),
        status='in_progress',
    )


@pytest.fixture
def make_athlete(flask_app):
    def factory(name='Athlete', birth_date=None, sex='male', email=None):
        athlete = Athlete(name=name, birth_date=birth_date, sex=sex, email=email)
        db.session.add(athlete)
        db.session.commit()
        return athlete
    return factory


@pytest.fixture
def eligible_birth_date(event):
    """Birth date that makes an athlete 16 on the event's start date"""
    start = event.start_at.date()
    return date(start.year - 16, start.month, min(start.day, 28))


@pytest.fixture
def team(flask_app, team_manager, event):
    """Team managed by ``team_manager`` and bound to ``event``"""
    team = Team(
        name='Test Team',
        manager_id=team_manager.id,
        created_by=team_manager.id,
        event_id=event.id,
    )
    db.session.add(team)
    db.session.commit()
    return team


@pytest.fixture
def free_team(flask_app, team_manager):
    """Team with no event yet"""
    team = Team(name='Free Agents', manager_id=team_manager.id, created_by=team_manager.id)
    db.session.add(team)
    db.session.commit()
    return team


@pytest.fixture
def seat_athlete(flask_app):
    """Put an athlete straight on a roster, bypassing the rules"""
    def seat(team, athlete):
        entry = RosterEntry(team_id=team.id, athlete_id=athlete.id, active=True)
        athlete.team_id = team.id
        db.session.add(entry)
        db.session.commit()
        return entry
    return seat


def _login(app, user):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
        sess['username'] = user.username
        sess['role'] = user.role
    return client


@pytest.fixture
def authenticated_organizer(flask_app, organizer):
    """Organizer-authenticated client"""
    return _login(flask_app, organizer)


@pytest.fixture
def authenticated_team_manager(flask_app, team_manager):
    """Team-manager-authenticated client"""
    return _login(flask_app, team_manager)


@pytest.fixture
def authenticated_other_manager(flask_app, other_manager):
    return _login(flask_app, other_manager)
