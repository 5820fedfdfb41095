"""
Mapping of raw directory entries to normalized RemoteUser records.
"""

from ldap_directory.config import DirectoryConfig
from ldap_directory.models import DirectoryEntry, RemoteUser, EMPTY_NAME


def normalize_email(value: str) -> str:
    return (value or '').strip().lower()


def extract_user(config: DirectoryConfig, entry: DirectoryEntry) -> RemoteUser:
    """
    Build a RemoteUser from a directory entry using the configured attribute names.

    Unmapped attributes stay empty. Missing first or last names are replaced
    by the EMPTY_NAME placeholder. No display-name fallback is attempted.

    Args:
        config: Directory configuration holding the attribute mapping
        entry: Raw directory entry

    Returns:
        Normalized RemoteUser
    """
    mapping = config.attributes

    firstname = entry.value(mapping.user_firstname).strip()
    lastname = entry.value(mapping.user_lastname).strip()

    return RemoteUser(
        firstname=firstname or EMPTY_NAME,
        lastname=lastname or EMPTY_NAME,
        email=normalize_email(entry.value(mapping.user_email)),
        remote_id=entry.value(mapping.user_rdn),
        cn=entry.value('cn'),
        dn=entry.dn,
    )
