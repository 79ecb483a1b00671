from flask import current_app
import resend

from errors import DispatchError, Ok, ValidationFailed
from models import normalize_email


def _athlete_message(payload: dict) -> tuple[str, str]:
    team_name = payload.get('team_name') or 'a team'
    invite_link = payload['invite_link']
    subject = f"Invitation to join {team_name}"
    html = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #333;">You have been invited!</h1>
        <p>You were invited to join <strong>{team_name}</strong>.</p>
        <p>To complete your athlete registration, open the link below:</p>
        <a href="{invite_link}"
           style="display: inline-block; background-color: #0066cc; color: white;
                  padding: 12px 24px; text-decoration: none; border-radius: 4px; margin: 20px 0;">
          Complete registration
        </a>
        <p style="color: #666; font-size: 14px;">
          This invitation is valid for 7 days. If you did not expect it, you can ignore this email.
        </p>
        <p style="font-size: 12px; word-break: break-all;">{invite_link}</p>
      </div>
    """
    return subject, html


def _manager_message(payload: dict) -> tuple[str, str]:
    name = payload.get('invitee_name') or 'there'
    invite_link = payload['invite_link']
    subject = "Invitation to register as a team manager"
    html = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #333;">Hello {name}!</h1>
        <p>You were invited to manage a team. Create your account using the link below:</p>
        <a href="{invite_link}"
           style="display: inline-block; background-color: #0066cc; color: white;
                  padding: 12px 24px; text-decoration: none; border-radius: 4px; margin: 20px 0;">
          Create account
        </a>
        <p style="color: #666; font-size: 14px;">This invitation is valid for 7 days.</p>
        <p style="font-size: 12px; word-break: break-all;">{invite_link}</p>
      </div>
    """
    return subject, html


_BUILDERS = {
    'athlete': _athlete_message,
    'manager': _manager_message,
}


def dispatch_invite(kind: str, target_email: str, payload: dict):
    """Email an invitation link. Failures never affect the token."""
    email = normalize_email(target_email)
    if kind not in _BUILDERS:
        return ValidationFailed.of([f'Unknown invitation kind: {kind}'])
    if not email or not payload.get('invite_link'):
        return ValidationFailed.of(['Email and invitation link are required'])

    api_key = current_app.config.get('RESEND_API_KEY')
    if not api_key:
        current_app.logger.warning(
            '[INVITE - DEV ONLY] %s invitation for %s -> %s', kind, email, payload['invite_link']
        )
        return DispatchError('Email transport is not configured')

    subject, html = _BUILDERS[kind](payload)
    params = {
        "from": current_app.config['MAIL_FROM_ADDRESS'],
        "to": [email],
        "subject": subject,
        "html": html,
    }

    resend.api_key = api_key
    try:
        response = resend.Emails.send(params)
    except Exception as e:
        current_app.logger.error('[INVITE] Failed to send %s invitation to %s: %s', kind, email, e)
        return DispatchError(f'Error sending email: {e}')

    current_app.logger.info('[INVITE] Sent %s invitation to %s', kind, email)
    return Ok(response)
