"""Roster and event-registration operations.

The eligibility checks in ``rules`` are advisory; the writes here repeat them
while holding a row lock on the team so two concurrent additions cannot push
a roster past its cap.
"""

from dataclasses import replace
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from context import SessionContext
from errors import NotPermitted, Ok, PersistenceError, ValidationFailed
from models import Athlete, Event, Registration, RosterEntry, Team, current_time, db
from rules import can_modify_roster, check_age, check_roster_caps, check_sex, eligibility_failures


def _event_record(event: Event):
    return event.snapshot(current_app.config['APP_TIMEZONE'])


def _lock_failure(event: Event | None, ctx: SessionContext, now: datetime):
    if event is None:
        return None
    lock = can_modify_roster(_event_record(event), ctx.is_organizer, now)
    if not lock.allowed:
        return NotPermitted(lock.message)
    return None


def add_to_roster(
    team: Team,
    athlete: Athlete,
    ctx: SessionContext,
    now: datetime | None = None,
    commit: bool = True,
):
    """Put ``athlete`` on ``team``'s roster after the lock and eligibility checks.

    With ``commit=False`` the caller owns the transaction (and its rollback).
    """
    now = now or current_time()
    event = team.event

    denied = _lock_failure(event, ctx, now)
    if denied:
        return denied

    try:
        locked_team = Team.query.filter_by(id=team.id).with_for_update().one()
        entries = locked_team.active_entries()

        errors = []
        if any(entry.athlete_id == athlete.id for entry in entries):
            errors.append(f'Athlete {athlete.name} is already on this roster')
        elif athlete.team_id is not None and athlete.team_id != team.id:
            errors.append(f'Athlete {athlete.name} already plays for another team')
        elif event is not None:
            snapshot = [entry.athlete.snapshot() for entry in entries]
            errors.extend(eligibility_failures(snapshot, athlete.snapshot(), _event_record(event)))

        if errors:
            if commit:
                db.session.rollback()
            return ValidationFailed.of(errors)

        entry = None
        if athlete.id is not None:
            entry = RosterEntry.query.filter_by(team_id=team.id, athlete_id=athlete.id).first()
        if entry:
            entry.active = True
            entry.joined_at = now
        else:
            entry = RosterEntry(team_id=team.id, athlete=athlete, joined_at=now, active=True)
            db.session.add(entry)
        athlete.team_id = team.id

        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error('Roster update for team %s failed: %s', team.id, exc)
        return PersistenceError(str(exc))

    current_app.logger.info('Athlete %s joined team %s', athlete.id, team.id)
    return Ok(entry)


def remove_from_roster(entry: RosterEntry, ctx: SessionContext, now: datetime | None = None):
    now = now or current_time()
    team = entry.team

    denied = _lock_failure(team.event, ctx, now)
    if denied:
        return denied

    try:
        entry.active = False
        if entry.athlete.team_id == team.id:
            entry.athlete.team_id = None
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error('Roster removal for team %s failed: %s', team.id, exc)
        return PersistenceError(str(exc))

    current_app.logger.info('Athlete %s left team %s', entry.athlete_id, team.id)
    return Ok(entry)


def registration_failures(team: Team, event: Event) -> list[str]:
    """Validate a whole roster against an event before registering it."""
    athletes = [athlete.snapshot() for athlete in team.roster()]
    record = _event_record(event)

    errors = []
    for athlete in athletes:
        for result in (check_age(athlete, record), check_sex(athlete, record)):
            if not result.valid:
                errors.append(result.message)

    if athletes:
        caps = check_roster_caps(athletes[:-1], athletes[-1], record)
        if not caps.valid:
            errors.append(caps.message)

    return errors


def register_team(team: Team, event: Event, ctx: SessionContext, now: datetime | None = None):
    now = now or current_time()

    denied = _lock_failure(event, ctx, now)
    if denied:
        return denied

    if Registration.query.filter_by(team_id=team.id, event_id=event.id).first():
        return ValidationFailed.of([f'Team {team.name} is already registered for {event.name}'])

    errors = registration_failures(team, event)
    if errors:
        return ValidationFailed.of(errors)

    registration = Registration(team_id=team.id, event_id=event.id, status='pending')
    if ctx.is_organizer:
        registration.set_status('approved', actor_id=ctx.user_id)

    try:
        db.session.add(registration)
        team.event_id = event.id
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error('Registration of team %s for event %s failed: %s', team.id, event.id, exc)
        return PersistenceError(str(exc))

    current_app.logger.info('Team %s registered for event %s (%s)', team.id, event.id, registration.status)
    return Ok(registration)


def decide_registration(registration: Registration, approve: bool, ctx: SessionContext):
    if not ctx.is_organizer or registration.event.organizer_id != ctx.user_id:
        return NotPermitted('Only the event organizer can decide registrations')

    if approve:
        errors = registration_failures(registration.team, registration.event)
        if errors:
            return ValidationFailed.of(errors)

    try:
        registration.set_status('approved' if approve else 'rejected', actor_id=ctx.user_id)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        return PersistenceError(str(exc))

    return Ok(registration)


def update_athlete(athlete: Athlete, changes: dict, ctx: SessionContext, now: datetime | None = None):
    """Apply ``changes`` to an athlete, re-checking eligibility for the team they play for.

    ``changes`` holds already parsed values keyed by column name.
    """
    now = now or current_time()
    team = athlete.current_team
    event = team.event if team else None

    denied = _lock_failure(event, ctx, now)
    if denied:
        return denied

    try:
        if event is not None:
            locked_team = Team.query.filter_by(id=team.id).with_for_update().one()
            others = [
                entry.athlete.snapshot()
                for entry in locked_team.active_entries()
                if entry.athlete_id != athlete.id
            ]
            record_changes = {key: changes[key] for key in ('name', 'birth_date', 'sex') if key in changes}
            candidate = replace(athlete.snapshot(), **record_changes)
            errors = eligibility_failures(others, candidate, _event_record(event))
            if errors:
                db.session.rollback()
                return ValidationFailed.of(errors)

        for key, value in changes.items():
            setattr(athlete, key, value)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error('Update of athlete %s failed: %s', athlete.id, exc)
        return PersistenceError(str(exc))

    current_app.logger.info('Athlete %s updated', athlete.id)
    return Ok(athlete)
