"""
NOTIFICATION SERVICE
====================

Delivers validation events to the people involved.

Channels:
- InAppNotifier: Notification rows (never the plaintext code)
- MailjetNotifier: email through the Mailjet v3.1 send API
- CompositeNotifier: fan-out over several channels

Notifiers report failures through NotificationResult; the workflow
logs them and never rolls a transition back because of them.
"""

import logging
from collections import namedtuple
from enum import Enum

import httpx

from tontine.extensions import db
from tontine.models import Notification

logger = logging.getLogger(__name__)

MAILJET_SEND_URL = 'https://api.mailjet.com/v3.1/send'
DEFAULT_TIMEOUT = 10.0

NotificationResult = namedtuple('NotificationResult', ['success', 'channel', 'error'])


class NotificationEvent(Enum):
    CODE_ISSUED = 'code_issued'
    VERIFIED = 'verified'
    COMPLETED = 'completed'
    REJECTED = 'rejected'
    EXPIRED = 'expired'


ACTION_LABELS = {
    'delete-account': 'Account deletion',
    'delete-group': 'Group deletion',
    'block-group': 'Group block',
    'unblock-group': 'Group unblock',
    'activate-account': 'Account activation',
    'deactivate-account': 'Account deactivation',
}


def render_message(event, payload, include_code=True):
    """
    Build (title, body) for an event.

    payload keys: request_id, action_type, resource_name, and depending on
    the event: code, expires_at, attempts, rejection_reason.
    """
    label = ACTION_LABELS.get(payload.get('action_type'), payload.get('action_type'))
    resource = payload.get('resource_name') or 'unknown resource'

    if event is NotificationEvent.CODE_ISSUED:
        title = f"Validation code required - {label}"
        lines = [f"Your confirmation is required for: {label} of {resource}."]
        if include_code and payload.get('code'):
            lines.append(f"Your code: {payload['code']}")
        else:
            lines.append("Your one-time code has been sent to you by email.")
        if payload.get('expires_at'):
            lines.append(f"The code expires at {payload['expires_at']:%Y-%m-%d %H:%M} UTC.")
        lines.append("You have 3 attempts. Do not share this code with anyone.")
        return title, '\n'.join(lines)

    if event is NotificationEvent.VERIFIED:
        return (f"Validation step confirmed - {label}",
                f"Step {payload.get('position')} of the request for {label} of {resource} was confirmed.")

    if event is NotificationEvent.COMPLETED:
        return (f"Validation complete - {label}",
                f"All approvers confirmed {label} of {resource}. The action can now be executed.")

    if event is NotificationEvent.REJECTED:
        return (f"Request rejected - {label}",
                f"The request for {label} of {resource} was rejected. "
                f"Reason: {payload.get('rejection_reason')}")

    if event is NotificationEvent.EXPIRED:
        return (f"Request expired - {label}",
                f"The request for {label} of {resource} expired before it was confirmed.")

    raise ValueError(f"Unknown notification event: {event!r}")


# ============================================================
# IN-APP
# ============================================================

class InAppNotifier:
    channel = 'in_app'

    def notify(self, principal, event, payload):
        title, body = render_message(event, payload, include_code=False)
        try:
            db.session.add(Notification(
                user_id=principal.id,
                event=event.value,
                title=title,
                message=body,
                reference_id=payload.get('request_id'),
            ))
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.exception("In-app notification failed for user %s", principal.id)
            return NotificationResult(False, self.channel, str(e))

        return NotificationResult(True, self.channel, None)


# ============================================================
# EMAIL (MAILJET)
# ============================================================

class MailjetNotifier:
    channel = 'email'

    def __init__(self, api_key, secret_key, from_email, from_name, directory,
                 client=None, timeout=DEFAULT_TIMEOUT):
        self._auth = (api_key, secret_key)
        self._from = {'Email': from_email, 'Name': from_name}
        self._directory = directory
        self._client = client
        self._timeout = timeout

    def notify(self, principal, event, payload):
        contact = self._directory.contact_for(principal.id)
        if not contact or not contact[1]:
            return NotificationResult(False, self.channel, "No email address on file")

        name, email, _ = contact
        title, body = render_message(event, payload)

        message = {
            'Messages': [{
                'From': self._from,
                'To': [{'Email': email, 'Name': name}],
                'Subject': title,
                'TextPart': body,
            }]
        }

        try:
            response = self._post(message)
        except httpx.TimeoutException:
            return NotificationResult(False, self.channel, "Mailjet request timed out")
        except httpx.HTTPError as e:
            logger.exception("Mailjet request failed")
            return NotificationResult(False, self.channel, str(e))

        if response.status_code != 200:
            return NotificationResult(False, self.channel, f"Mailjet returned {response.status_code}")

        statuses = [m.get('Status') for m in response.json().get('Messages', [])]
        if statuses != ['success']:
            return NotificationResult(False, self.channel, f"Mailjet rejected the message: {statuses}")

        logger.info("Sent %s email for request %s to user %s",
                    event.value, payload.get('request_id'), principal.id)
        return NotificationResult(True, self.channel, None)

    def _post(self, message):
        if self._client is not None:
            return self._client.post(MAILJET_SEND_URL, json=message, auth=self._auth)
        with httpx.Client(timeout=self._timeout) as client:
            return client.post(MAILJET_SEND_URL, json=message, auth=self._auth)


# ============================================================
# FAN-OUT
# ============================================================

class CompositeNotifier:
    """Send through every channel; succeed if at least one channel did."""

    channel = 'composite'

    def __init__(self, notifiers):
        self._notifiers = list(notifiers)

    def notify(self, principal, event, payload):
        errors = []
        delivered = False
        for notifier in self._notifiers:
            try:
                result = notifier.notify(principal, event, payload)
            except Exception as e:
                logger.exception("Notifier %s raised", getattr(notifier, 'channel', notifier))
                errors.append(str(e))
                continue
            if result.success:
                delivered = True
            else:
                errors.append(f"{result.channel}: {result.error}")

        return NotificationResult(delivered, self.channel, '; '.join(errors) or None)


def build_notifier(config, directory):
    """Notifier stack for an app config: in-app always, email when configured."""
    notifiers = [InAppNotifier()]

    if config.get('MAILJET_API_KEY') and config.get('MAILJET_SECRET_KEY'):
        notifiers.append(MailjetNotifier(
            api_key=config['MAILJET_API_KEY'],
            secret_key=config['MAILJET_SECRET_KEY'],
            from_email=config.get('MAILJET_FROM_EMAIL'),
            from_name=config.get('MAILJET_FROM_NAME'),
            directory=directory,
        ))
    else:
        logger.warning("Mailjet is not configured; one-time codes will not be emailed")

    return CompositeNotifier(notifiers)
