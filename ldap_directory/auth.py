"""
Password verification against the directory.

A user is authenticated by looking up their entry with the service account
and re-binding the same connection as that entry. Callers only ever see a
boolean; the reason for a rejection is logged, never returned.
"""

import logging
from typing import Optional

from ldap3.core.exceptions import LDAPException

from ldap_directory.config import DirectoryConfig
from ldap_directory.ldap_client import AmbiguousMatchError, DirectorySearcher, DirectoryError, establish
from ldap_directory.logging_setup import security_logger

logger = logging.getLogger(__name__)


class AuthenticationOutcome:
    """Result of one authentication attempt, with the internal reason for operators."""

    def __init__(self, success: bool, reason: Optional[str] = None):
        self.success = success
        self.reason = reason

    def __bool__(self):
        return self.success

    def __repr__(self):
        return f"AuthenticationOutcome(success={self.success}, reason={self.reason!r})"


def verify_credentials(config: DirectoryConfig, username: str, password: str) -> AuthenticationOutcome:
    """
    Verify a username and password, keeping the failure reason.

    Ambiguous and missing users fail closed without any re-bind. An empty
    password is refused before contacting the directory because LDAP treats
    it as an unauthenticated bind that always succeeds.
    """
    if not username or not password:
        return AuthenticationOutcome(False, "empty username or password")

    try:
        with establish(config) as connection:
            searcher = DirectorySearcher(config, connection)
            searcher.bind_service()
            entry = searcher.find_unique(config.attributes.user_rdn, username)
            if connection.bind_end_user(entry.dn, password):
                return AuthenticationOutcome(True)
            return AuthenticationOutcome(False, "invalid credentials")
    except AmbiguousMatchError as e:
        security_logger.log_security_event("ambiguous directory match during authentication", f"user={username}")
        return AuthenticationOutcome(False, f"{type(e).__name__}: {e}")
    except DirectoryError as e:
        return AuthenticationOutcome(False, f"{type(e).__name__}: {e}")
    except LDAPException as e:
        return AuthenticationOutcome(False, f"LDAP error: {e}")


def authenticate(config: DirectoryConfig, username: str, password: str) -> bool:
    """
    Check a user's password against the directory.

    Args:
        config: Directory configuration
        username: Value of the configured RDN attribute, e.g. the uid
        password: Password to verify

    Returns:
        True if the directory accepted the password for exactly one matching
        entry, False for every other outcome
    """
    outcome = verify_credentials(config, username, password)
    if not outcome:
        logger.info(f"LDAP authentication rejected for {username}: {outcome.reason}")
    return outcome.success
