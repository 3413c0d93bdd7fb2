"""Authentication session state, the auth service client and profile reconciliation.

Import concrete pieces from their modules (``serene.auth.store``,
``serene.auth.client``); this package keeps only the shared names.
"""

from .constants import AuthEvent
from .models import AuthSession, Identity, Profile, SessionState

__all__ = ["AuthEvent", "AuthSession", "Identity", "Profile", "SessionState"]
