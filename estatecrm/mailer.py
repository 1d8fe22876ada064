"""
estatecrm/mailer.py

Account e-mail outbox. Messages are queued as OutboundEmail rows in the same
transaction as the state change that triggers them; a separate delivery worker
sends them.
"""

import logging

from estatecrm.config import EMAIL_FROM
from estatecrm.models import OutboundEmail, User
from estatecrm.tenant import TenantScopedAccessor

logger = logging.getLogger(__name__)

ACCOUNT_ACTIVATED = "account_activated"
ACCOUNT_DEACTIVATED = "account_deactivated"

TEMPLATES = {
    ACCOUNT_ACTIVATED: (
        "Your account has been activated",
        "Hello {name},\n\nYour account is now active. You can sign in and start working.\n",
    ),
    ACCOUNT_DEACTIVATED: (
        "Your account has been deactivated",
        "Hello {name},\n\nYour account has been deactivated by an administrator of your organization.\n",
    ),
}


def queue_account_email(accessor: TenantScopedAccessor, user: User, template: str) -> OutboundEmail:
    subject, body = TEMPLATES[template]
    email = accessor.create(
        OutboundEmail,
        recipient_user_id=user.id,
        to_address=user.email,
        from_address=EMAIL_FROM,
        template=template,
        subject=subject,
        body=body.format(name=user.name or user.email),
    )
    logger.info(f"[MAIL] Queued {template} for user_id={user.id}")
    return email
