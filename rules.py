"""Eligibility and roster-lock rules.

Every function here is pure: it works on frozen snapshots taken at the store
boundary and never touches the database. Callers supply a consistent roster
snapshot; the checks are advisory and must be repeated inside the transaction
that writes the roster (see ``roster.add_to_roster``).
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence

STARTED_STATUSES = ('in_progress', 'finished')


@dataclass(frozen=True)
class EventRecord:
    id: Optional[int]
    start_at: datetime
    status: str = 'scheduled'
    category: str = 'mixed'
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    cap_total: Optional[int] = None
    cap_male: Optional[int] = None
    cap_female: Optional[int] = None
    # Local calendar date of the start; ages are counted on this day when set.
    start_date: Optional[date] = None


@dataclass(frozen=True)
class AthleteRecord:
    id: Optional[int]
    name: str
    birth_date: Optional[date] = None
    sex: Optional[str] = None


@dataclass(frozen=True)
class RuleResult:
    valid: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class LockResult:
    allowed: bool
    message: Optional[str] = None


VALID = RuleResult(True)


def age_on(birth_date: date, on: date) -> int:
    """Whole calendar years elapsed; the birthday itself counts as reached."""
    years = on.year - birth_date.year
    if (on.month, on.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def check_age(athlete: AthleteRecord, event: EventRecord) -> RuleResult:
    if athlete.birth_date is None:
        return RuleResult(False, f"Athlete {athlete.name} has no birth date on record")

    age = age_on(athlete.birth_date, event.start_date or _as_date(event.start_at))

    if event.min_age is not None and age < event.min_age:
        return RuleResult(
            False,
            f"Athlete {athlete.name} is {age} years old, minimum required: {event.min_age}",
        )

    if event.max_age is not None and age > event.max_age:
        return RuleResult(
            False,
            f"Athlete {athlete.name} is {age} years old, maximum allowed: {event.max_age}",
        )

    return VALID


def check_sex(athlete: AthleteRecord, event: EventRecord) -> RuleResult:
    if not athlete.sex:
        return RuleResult(False, f"Athlete {athlete.name} has no sex on record")

    if event.category == 'mixed':
        return VALID

    if athlete.sex != event.category:
        return RuleResult(
            False,
            f"Event is {event.category}, athlete {athlete.name} is {athlete.sex}",
        )

    return VALID


def check_roster_caps(
    current_roster: Sequence[AthleteRecord],
    candidate: AthleteRecord,
    event: EventRecord,
) -> RuleResult:
    total = len(current_roster) + 1
    if event.cap_total is not None and total > event.cap_total:
        return RuleResult(False, f"Roster limit of {event.cap_total} athletes reached")

    if event.category == 'mixed':
        male = sum(1 for a in current_roster if a.sex == 'male') + (candidate.sex == 'male')
        female = sum(1 for a in current_roster if a.sex == 'female') + (candidate.sex == 'female')

        if event.cap_male is not None and male > event.cap_male:
            return RuleResult(False, f"Limit of {event.cap_male} male athletes reached")

        if event.cap_female is not None and female > event.cap_female:
            return RuleResult(False, f"Limit of {event.cap_female} female athletes reached")

    return VALID


def eligibility_failures(
    current_roster: Sequence[AthleteRecord],
    candidate: AthleteRecord,
    event: EventRecord,
) -> list[str]:
    """Run every check and collect the failure messages in order."""
    results = (
        check_age(candidate, event),
        check_sex(candidate, event),
        check_roster_caps(current_roster, candidate, event),
    )
    return [result.message for result in results if not result.valid]


def has_started(event: EventRecord, now: datetime) -> bool:
    return now >= event.start_at or event.status in STARTED_STATUSES


def can_modify_roster(event: EventRecord, is_organizer: bool, now: datetime) -> LockResult:
    if has_started(event, now) and not is_organizer:
        return LockResult(
            False,
            "Event has already started. Only organizers can change team rosters.",
        )
    return LockResult(True)
