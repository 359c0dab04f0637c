"""Import every ORM model so ``Base.metadata`` is complete."""

from careshift.auth.models import User
from careshift.authorizations.models import Authorization, AuthorizationAlert
from careshift.clients.models import Client
from careshift.common.audit import AuditTrail
from careshift.evv.models import EVVRecord
from careshift.notifications.models import Notification
from careshift.scheduling.models import Shift

__all__ = [
    "AuditTrail",
    "Authorization",
    "AuthorizationAlert",
    "Client",
    "EVVRecord",
    "Notification",
    "Shift",
    "User",
]
