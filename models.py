from datetime import datetime, date
import re
import pytz

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import validates
from werkzeug.security import generate_password_hash, check_password_hash

from rules import AthleteRecord, EventRecord

db = SQLAlchemy()

UTC = pytz.utc

ROLES = ('organizer', 'team_manager', 'athlete')
EVENT_STATUSES = ('scheduled', 'in_progress', 'finished')
CATEGORIES = ('male', 'female', 'mixed')
SEXES = ('male', 'female')
REGISTRATION_STATUSES = ('pending', 'approved', 'rejected')
INVITE_KINDS = ('athlete', 'manager')

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

# Values coming from the legacy Portuguese data set.
_SEX_ALIASES = {
    'masculino': 'male',
    'feminino': 'female',
    'misto': 'mixed',
}


def current_time() -> datetime:
    """Naive UTC timestamp; every stored instant uses this convention."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_local(value: datetime | None, tz_name: str) -> datetime | None:
    """Render a stored naive-UTC instant in the given timezone."""
    if value is None:
        return None
    return UTC.localize(value).astimezone(pytz.timezone(tz_name))


def parse_instant(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 date or datetime into naive UTC."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise ValueError(f"Expected an ISO-8601 string, got {raw!r}")
    raw = raw.strip()
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    return to_utc(datetime.fromisoformat(raw))


def normalize_email(email: str | None) -> str:
    if not isinstance(email, str):
        return ''
    return email.strip().lower()


def normalize_sex(value: str | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Unknown sex: {value!r}")
    value = value.strip().lower()
    if not value:
        return None
    return _SEX_ALIASES.get(value, value)


def _isoformat(value):
    return value.isoformat() if value else None


class User(db.Model):
    """Accounts that can log in - organizers, team managers and athletes."""

    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)

    events_organized = db.relationship('Event', backref='organizer', lazy=True)
    teams_managed = db.relationship(
        'Team', backref='manager', lazy=True, foreign_keys='Team.manager_id'
    )

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<User {self.id} {self.username} role={self.role}>"

    @validates('email')
    def _normalize_email(self, key, value):
        return normalize_email(value)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_organizer(self) -> bool:
        return self.role == 'organizer'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
        }

    @staticmethod
    def validate_format(
        username: str,
        email: str,
        password: str,
        role: str,
        roles: tuple[str, ...] = ROLES,
    ) -> list[str]:
        """Validate registration data format without using the database."""
        errors: list[str] = []

        if not username or len(username.strip()) < 3:
            errors.append("Username must be at least 3 characters")

        if username and not username.replace('_', '').replace('-', '').isalnum():
            errors.append("Username can only contain letters, numbers, hyphens and underscores")

        if not email or not re.match(EMAIL_PATTERN, email.strip()):
            errors.append("Valid email required")

        if not password or len(password) < 8:
            errors.append("Password must be at least 8 characters")

        password_regex = r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*#?&])[A-Za-z\d@$!%*#?&]{8,}$"
        if password and not re.fullmatch(password_regex, password):
            errors.append(
                "Password must contain at least one uppercase letter, one lowercase letter, one number, and one special character"
            )

        if role not in roles:
            errors.append("Invalid role selected")

        return errors


class Event(db.Model):
    __tablename__ = 'event'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(120))
    start_at = db.Column(db.DateTime, nullable=False)
    end_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), default='scheduled', nullable=False)
    min_age = db.Column(db.Integer)
    max_age = db.Column(db.Integer)
    category = db.Column(db.String(10), default='mixed', nullable=False)
    cap_total = db.Column(db.Integer)
    cap_male = db.Column(db.Integer)
    cap_female = db.Column(db.Integer)
    organizer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)

    teams = db.relationship('Team', backref='event', lazy=True)
    registrations = db.relationship(
        'Registration', backref='event', lazy=True, cascade='all, delete-orphan'
    )
    matches = db.relationship('Match', backref='event', lazy=True, cascade='all, delete-orphan')

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Event {self.id} {self.name} status={self.status}>"

    @validates('end_at')
    def validate_end_at(self, key, value):
        if self.start_at and value and value < self.start_at:
            raise ValueError('End must be on or after the start')
        return value

    @validates('category')
    def validate_category(self, key, value):
        value = normalize_sex(value) or 'mixed'
        if value not in CATEGORIES:
            raise ValueError(f'Unknown category: {value}')
        return value

    @validates('status')
    def validate_status(self, key, value):
        if value not in EVENT_STATUSES:
            raise ValueError(f'Unknown event status: {value}')
        if self.status is not None and value != self.status:
            if EVENT_STATUSES.index(value) < EVENT_STATUSES.index(self.status):
                raise ValueError(f'Event status cannot go back from {self.status} to {value}')
        return value

    def advance_status(self, new_status: str) -> None:
        self.status = new_status

    def snapshot(self, tz_name: str | None = None) -> EventRecord:
        """Rule-layer view of the event.

        With ``tz_name`` the start date used for age checks is the local
        calendar date of the start instant in that zone.
        """
        start_date = to_local(self.start_at, tz_name).date() if tz_name else None
        return EventRecord(
            id=self.id,
            start_at=self.start_at,
            start_date=start_date,
            status=self.status,
            category=self.category,
            min_age=self.min_age,
            max_age=self.max_age,
            cap_total=self.cap_total,
            cap_male=self.cap_male,
            cap_female=self.cap_female,
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'location': self.location,
            'start_at': _isoformat(self.start_at),
            'end_at': _isoformat(self.end_at),
            'status': self.status,
            'category': self.category,
            'min_age': self.min_age,
            'max_age': self.max_age,
            'cap_total': self.cap_total,
            'cap_male': self.cap_male,
            'cap_female': self.cap_female,
            'organizer_id': self.organizer_id,
        }

    @staticmethod
    def validate_format(
        name: str,
        start_at: datetime | None,
        end_at: datetime | None,
        category: str | None = 'mixed',
        min_age: int | None = None,
        max_age: int | None = None,
        cap_total: int | None = None,
        cap_male: int | None = None,
        cap_female: int | None = None,
    ) -> list[str]:
        """Validate event settings before they reach the database."""
        errors: list[str] = []

        if not name or not name.strip():
            errors.append("Event name is required")

        if start_at is None or end_at is None:
            errors.append("Start and end are required")
        elif end_at < start_at:
            errors.append("End must be on or after the start")

        category = normalize_sex(category) or 'mixed'
        if category not in CATEGORIES:
            errors.append("Category must be male, female or mixed")

        for label, value in (('Minimum age', min_age), ('Maximum age', max_age)):
            if value is not None and value < 0:
                errors.append(f"{label} cannot be negative")
        if min_age is not None and max_age is not None and min_age > max_age:
            errors.append("Minimum age cannot be greater than maximum age")

        for label, value in (('Roster cap', cap_total), ('Male cap', cap_male), ('Female cap', cap_female)):
            if value is not None and value < 1:
                errors.append(f"{label} must be at least 1")

        if category != 'mixed' and (cap_male is not None or cap_female is not None):
            errors.append("Per-sex caps only apply to mixed events")

        return errors


class Team(db.Model):
    __tablename__ = 'team'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    manager_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'))
    created_at = db.Column(db.DateTime, default=current_time)

    roster_entries = db.relationship(
        'RosterEntry', backref='team', lazy=True, cascade='all, delete-orphan'
    )
    registrations = db.relationship('Registration', backref='team', lazy=True)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Team {self.id} {self.name}>"

    def active_entries(self) -> list['RosterEntry']:
        return (
            RosterEntry.query.filter_by(team_id=self.id, active=True)
            .order_by(RosterEntry.joined_at.asc(), RosterEntry.id.asc())
            .all()
        )

    def roster(self) -> list['Athlete']:
        return [entry.athlete for entry in self.active_entries()]

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'manager_id': self.manager_id,
            'event_id': self.event_id,
        }


class Athlete(db.Model):
    __tablename__ = 'athlete'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120))
    birth_date = db.Column(db.Date)
    sex = db.Column(db.String(10))
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'))
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=current_time)

    current_team = db.relationship('Team', foreign_keys=[team_id])
    roster_entries = db.relationship('RosterEntry', backref='athlete', lazy=True)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Athlete {self.id} {self.name}>"

    @validates('sex')
    def validate_sex(self, key, value):
        value = normalize_sex(value)
        if value is not None and value not in SEXES:
            raise ValueError(f'Unknown sex: {value}')
        return value

    @validates('email')
    def _normalize_email(self, key, value):
        return normalize_email(value) or None

    def snapshot(self) -> AthleteRecord:
        return AthleteRecord(
            id=self.id,
            name=self.name,
            birth_date=self.birth_date,
            sex=self.sex,
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'birth_date': _isoformat(self.birth_date),
            'sex': self.sex,
            'team_id': self.team_id,
        }

    @staticmethod
    def validate_format(name: str, email: str, birth_date: str, sex: str, today: date | None = None) -> list[str]:
        """Validate athlete form fields as submitted, without using the database."""
        errors: list[str] = []

        if not name or not name.strip():
            errors.append("Name is required")

        if email and not re.match(EMAIL_PATTERN, email.strip()):
            errors.append("Valid email required")

        try:
            born = parse_birth_date(birth_date)
        except ValueError:
            errors.append("Birth date must be in YYYY-MM-DD format")
        else:
            if born is None:
                errors.append("Birth date is required")
            elif born > (today or current_time().date()):
                errors.append("Birth date cannot be in the future")

        try:
            sex = normalize_sex(sex)
        except ValueError:
            sex = 'invalid'
        if sex not in SEXES:
            errors.append("Sex must be male or female")

        return errors


class RosterEntry(db.Model):
    """Membership of an athlete in a team roster."""

    __tablename__ = 'roster_entry'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    athlete_id = db.Column(db.Integer, db.ForeignKey('athlete.id'), nullable=False)
    joined_at = db.Column(db.DateTime, default=current_time)
    active = db.Column(db.Boolean, default=True, nullable=False)

    __table_args__ = (db.UniqueConstraint('team_id', 'athlete_id', name='unique_team_athlete'),)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'team_id': self.team_id,
            'athlete': self.athlete.to_dict() if self.athlete else None,
            'joined_at': _isoformat(self.joined_at),
            'active': self.active,
        }


class Registration(db.Model):
    """A team's entry into an event, approved by an organizer."""

    __tablename__ = 'registration'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False)
    status = db.Column(db.String(20), default='pending', nullable=False)
    decided_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    decided_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=current_time)

    __table_args__ = (db.UniqueConstraint('team_id', 'event_id', name='unique_team_event'),)

    def set_status(self, new_status: str, actor_id: int | None = None):
        if new_status not in REGISTRATION_STATUSES:
            raise ValueError(f'Unknown registration status: {new_status}')
        self.status = new_status
        self.decided_by = actor_id
        self.decided_at = current_time()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'team_id': self.team_id,
            'event_id': self.event_id,
            'status': self.status,
            'decided_by': self.decided_by,
        }


class InviteToken(db.Model):
    """Single-use, time-limited invitation to register as athlete or manager."""

    __tablename__ = 'invite_token'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    kind = db.Column(db.String(10), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'))
    invitee_name = db.Column(db.String(120))
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=current_time)
    expires_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(10), nullable=False, default='pending')  # pending, redeemed
    redeemed_at = db.Column(db.DateTime)

    team = db.relationship('Team')
    creator = db.relationship('User', foreign_keys=[created_by])

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<InviteToken {self.id} kind={self.kind} status={self.status}>"

    def state(self, now: datetime) -> str:
        if self.status == 'pending' and now >= self.expires_at:
            return 'expired'
        return self.status

    def to_dict(self, now: datetime | None = None) -> dict:
        now = now or current_time()
        return {
            'id': self.id,
            'kind': self.kind,
            'email': self.email,
            'team': self.team.to_dict() if self.team else None,
            'invitee_name': self.invitee_name,
            'created_at': _isoformat(self.created_at),
            'expires_at': _isoformat(self.expires_at),
            'state': self.state(now),
        }


class Match(db.Model):
    __tablename__ = 'match'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False)
    home_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    away_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    scheduled_at = db.Column(db.DateTime, nullable=False)
    venue = db.Column(db.String(100))
    status = db.Column(db.String(20), default='scheduled', nullable=False)
    home_score = db.Column(db.Integer, default=0, nullable=False)
    away_score = db.Column(db.Integer, default=0, nullable=False)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    home_team = db.relationship('Team', foreign_keys=[home_team_id])
    away_team = db.relationship('Team', foreign_keys=[away_team_id])

    @validates('status')
    def validate_status(self, key, value):
        if value not in EVENT_STATUSES:
            raise ValueError(f'Unknown match status: {value}')
        return value

    @property
    def is_live(self):
        return self.status == 'in_progress'

    @property
    def versus_display(self):
        home = self.home_team.name if self.home_team else 'TBD'
        away = self.away_team.name if self.away_team else 'TBD'
        return f"{home} vs {away}"

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'event_id': self.event_id,
            'home_team_id': self.home_team_id,
            'away_team_id': self.away_team_id,
            'versus': self.versus_display,
            'scheduled_at': _isoformat(self.scheduled_at),
            'venue': self.venue,
            'status': self.status,
            'home_score': self.home_score,
            'away_score': self.away_score,
            'updated_at': _isoformat(self.updated_at),
        }


def parse_birth_date(raw: str | None) -> date | None:
    if raw is None or raw == '':
        return None
    if not isinstance(raw, str):
        raise ValueError(f"Expected a YYYY-MM-DD string, got {raw!r}")
    return date.fromisoformat(raw.strip())
