"""Invitation token lifecycle: issue, check, link and redeem."""

import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

import mailer
from errors import AlreadyRedeemed, Expired, Ok, PersistenceError, ValidationFailed
from models import INVITE_KINDS, InviteToken, current_time, db, normalize_email

INVITE_TTL = timedelta(days=7)

ATHLETE_ROUTE = 'register/athlete'
MANAGER_ROUTE = 'register/manager'

ROUTES = {
    'athlete': ATHLETE_ROUTE,
    'manager': MANAGER_ROUTE,
}


def make_token() -> str:
    return secrets.token_urlsafe(32)


def issue(
    kind: str,
    target_email: str,
    issuer_id: int,
    team_id: int | None = None,
    invitee_name: str | None = None,
    now: datetime | None = None,
):
    """Mint and persist a pending invitation valid for seven days."""
    email = normalize_email(target_email)

    errors = []
    if not email:
        errors.append('Invitee email is required')
    if kind not in INVITE_KINDS:
        errors.append(f'Unknown invitation kind: {kind}')
    elif kind == 'athlete' and team_id is None:
        errors.append('Athlete invitations must name a team')
    elif kind == 'manager' and team_id is not None:
        errors.append('Manager invitations cannot be bound to a team')
    if errors:
        return ValidationFailed.of(errors)

    created_at = now or current_time()
    token = InviteToken(
        token=make_token(),
        kind=kind,
        email=email,
        team_id=team_id,
        invitee_name=(invitee_name.strip() or None) if isinstance(invitee_name, str) else None,
        created_by=issuer_id,
        created_at=created_at,
        expires_at=created_at + INVITE_TTL,
        status='pending',
    )

    try:
        db.session.add(token)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error('Could not store %s invitation for %s: %s', kind, email, exc)
        return PersistenceError(str(exc))

    current_app.logger.info('Issued %s invitation %s for %s', kind, token.id, email)
    return Ok(token)


def is_redeemable(token: InviteToken, now: datetime) -> bool:
    return token.status == 'pending' and now < token.expires_at


def build_invite_link(base_url: str, token: InviteToken, route: str | None = None):
    if not base_url or not base_url.strip():
        return ValidationFailed.of(['Base URL is required to build an invitation link'])
    route = route or ROUTES[token.kind]
    return Ok(f"{base_url.strip().rstrip('/')}/{route}?token={token.token}")


def redeem(token: InviteToken, now: datetime):
    """Decide whether ``token`` may be redeemed. Never changes state."""
    if now >= token.expires_at:
        return Expired()
    if token.status != 'pending':
        return AlreadyRedeemed()
    return Ok(token)


def complete_redemption(token: InviteToken, now: datetime):
    """Atomically move the token from pending to redeemed.

    Only the conditional UPDATE decides who wins when two redemptions race.
    The caller owns the transaction and commits it with its own writes.
    """
    result = db.session.execute(
        update(InviteToken)
        .where(
            InviteToken.id == token.id,
            InviteToken.status == 'pending',
            InviteToken.expires_at > now,
        )
        .values(status='redeemed', redeemed_at=now)
        .execution_options(synchronize_session=False)
    )

    db.session.expire(token, ['status', 'redeemed_at'])
    if result.rowcount == 1:
        return Ok(token)

    if now >= token.expires_at:
        return Expired()
    return AlreadyRedeemed()


def send_invitation(token: InviteToken, base_url: str):
    """Build the link for ``token`` and hand it to the email transport.

    Returns ``(link_result, dispatch_result)``; the token is untouched either way.
    """
    link = build_invite_link(base_url, token)
    if not link.ok:
        return link, link

    details = {'invite_link': link.value}
    if token.kind == 'athlete':
        details['team_name'] = token.team.name if token.team else None
    else:
        details['invitee_name'] = token.invitee_name
    return link, mailer.dispatch_invite(token.kind, token.email, details)


def find_token(raw: str | None) -> InviteToken | None:
    if not raw or not isinstance(raw, str):
        return None
    return InviteToken.query.filter_by(token=raw.strip()).first()


def email_matches(token: InviteToken, email: str | None) -> bool:
    return normalize_email(email) == token.email
