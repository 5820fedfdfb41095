"""
LDAP Directory Integration - Authenticate users against and reconcile users from an LDAP directory.

This package connects to an LDAP directory, reads user and group entries,
normalizes them into a de-duplicated user set ready for a local user store,
and verifies end-user passwords by re-binding as the matched entry.
"""

__version__ = "1.0.0"
__author__ = "LDAP Directory Team"
