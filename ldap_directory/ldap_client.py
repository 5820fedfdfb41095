"""
LDAP client for connecting to and querying LDAP directories.

This module opens per-operation directory connections (optionally upgraded
with StartTLS), binds the service account and runs the user-filter and
group-filter searches that feed user reconciliation and authentication.
"""

import logging
import re
import ssl
from typing import List, Optional, Tuple
from ldap3 import Server, Connection, Tls, SUBTREE, NONE, SIMPLE
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import RESULT_SUCCESS
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import parse_dn

from ldap_directory.attributes import extract_user
from ldap_directory.config import DirectoryConfig, ENCRYPTION_STARTTLS
from ldap_directory.models import DirectoryEntry, RemoteUser

logger = logging.getLogger(__name__)

_DN_ESCAPE = re.compile(r'((?:\\[0-9A-Fa-f]{2})+)|\\(.)')


class DirectoryError(Exception):
    """Base exception for directory failures."""
    pass


class LDAPConnectionError(DirectoryError):
    """Raised when dialing the server or the StartTLS upgrade fails."""
    pass


class BindError(DirectoryError):
    """Raised when the directory rejects a bind."""
    pass


class SearchError(DirectoryError):
    """Raised when a directory search fails."""
    pass


class NotFoundError(DirectoryError):
    """Raised when a unique lookup matched no entry."""
    pass


class AmbiguousMatchError(DirectoryError):
    """Raised when a unique lookup matched more than one entry."""
    pass


class DirectoryConnection:
    """
    A live directory connection bound to at most one identity at a time.

    Once re-bound as an end user the connection no longer carries the
    service account's trust, so further service binds and searches are refused.
    """

    def __init__(self, connection: Connection, address: str, base_dn: str):
        self.connection = connection
        self.address = address
        self.base_dn = base_dn
        self.identity: Optional[str] = None
        self.end_user_bound = False
        self.closed = False

    def bind_service(self, bind_dn: str, bind_password: str):
        """
        Bind the service account.

        Raises:
            BindError: If the directory rejects the credentials
            DirectoryError: If the connection was already used for an end-user bind
        """
        self._ensure_usable()
        self._bind(bind_dn, bind_password)
        logger.debug(f"Bound service account {bind_dn} on {self.address}")

    def bind_end_user(self, user_dn: str, password: str) -> bool:
        """
        Re-bind as an end user to verify their password.

        Returns:
            True only if the directory accepted the credentials
        """
        self._ensure_usable()
        # The service identity is gone from here on, whatever the outcome.
        self.end_user_bound = True
        try:
            self._bind(user_dn, password)
        except BindError as e:
            logger.debug(f"End-user bind rejected: {e}")
            return False
        return True

    def search(self, search_filter: str, attributes: List[str],
               search_base: Optional[str] = None) -> List[DirectoryEntry]:
        """
        Run a whole-subtree search.

        Args:
            search_filter: LDAP filter string
            attributes: Attribute names to request
            search_base: Base DN, defaults to the configured base DN

        Returns:
            Matching entries, possibly empty

        Raises:
            SearchError: If the filter is invalid or the server reports an error
        """
        self._ensure_usable()
        search_base = search_base or self.base_dn
        logger.debug(f"Searching with filter: {search_filter} in base: {search_base}")

        try:
            self.connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes
            )
        except LDAPException as e:
            raise SearchError(f"Search {search_filter} failed: {e}") from e

        result = self.connection.result or {}
        if result.get('result', RESULT_SUCCESS) != RESULT_SUCCESS:
            raise SearchError(f"Search {search_filter} failed: "
                              f"{result.get('description')} {result.get('message', '')}".rstrip())

        entries = []
        for item in self.connection.response or []:
            if item.get('type', 'searchResEntry') != 'searchResEntry':
                continue
            entries.append(DirectoryEntry(item.get('dn', ''), item.get('attributes')))
        return entries

    def close(self):
        """Close the connection; safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        try:
            self.connection.unbind()
            logger.debug(f"LDAP connection to {self.address} closed")
        except LDAPException as e:
            logger.warning(f"Error closing LDAP connection: {e}")

    def _bind(self, user: str, password: str):
        try:
            bound = self.connection.rebind(user=user, password=password, authentication=SIMPLE)
        except LDAPException as e:
            raise BindError(f"Bind failed for {user}: {e}") from e
        if not bound:
            raise BindError(f"Bind failed for {user}: {self._result_description()}")
        self.identity = user

    def _ensure_usable(self):
        if self.closed:
            raise DirectoryError(f"Connection to {self.address} is closed")
        if self.end_user_bound:
            raise DirectoryError(f"Connection to {self.address} was re-bound as an end user and cannot be reused")

    def _result_description(self) -> str:
        result = self.connection.result or {}
        return str(result.get('description') or result)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def _create_tls_config(config: DirectoryConfig) -> Tls:
    """
    Create TLS configuration for the StartTLS upgrade.

    Raises:
        LDAPConnectionError: If the TLS settings are unusable
    """
    tls_config = {}

    if not config.verify_ssl:
        tls_config['validate'] = ssl.CERT_NONE
        logger.warning("SSL certificate verification disabled")
    else:
        tls_config['validate'] = ssl.CERT_REQUIRED

    if config.ca_cert_file:
        tls_config['ca_certs_file'] = config.ca_cert_file
        logger.debug(f"Using CA certificate file: {config.ca_cert_file}")

    try:
        return Tls(**tls_config)
    except LDAPException as e:
        raise LDAPConnectionError(f"Failed to create TLS configuration: {e}") from e


def establish(config: DirectoryConfig) -> DirectoryConnection:
    """
    Open a connection to the configured directory server.

    The caller owns the returned connection and must close it, normally with
    ``with establish(config) as connection:``.

    Raises:
        LDAPConnectionError: If the server cannot be reached or StartTLS fails
    """
    start_tls = config.encryption_type == ENCRYPTION_STARTTLS
    tls_config = _create_tls_config(config) if start_tls else None

    logger.info(f"Connecting to LDAP server {config.address}")
    try:
        server = Server(
            config.server_host,
            port=config.server_port,
            use_ssl=False,
            tls=tls_config,
            get_info=NONE,
            connect_timeout=config.connection_timeout
        )
        connection = Connection(
            server,
            auto_bind=False,
            receive_timeout=config.receive_timeout,
            raise_exceptions=False
        )
        connection.open()
    except LDAPException as e:
        raise LDAPConnectionError(f"Unable to dial LDAP server {config.address}: {e}") from e

    directory_connection = DirectoryConnection(connection, config.address, config.base_dn)

    if start_tls:
        try:
            upgraded = connection.start_tls()
        except LDAPException as e:
            directory_connection.close()
            raise LDAPConnectionError(f"Unable to startTLS with LDAP server {config.address}: {e}") from e
        if not upgraded:
            directory_connection.close()
            raise LDAPConnectionError(f"Unable to startTLS with LDAP server {config.address}: {connection.result}")
        logger.debug("StartTLS negotiation successful")
    else:
        logger.warning(f"Connection to {config.address} is not encrypted")

    return directory_connection


def _unescape_dn_value(value: str) -> str:
    """Undo RFC 4514 escaping: ``\\,`` becomes ``,`` and hex pairs are decoded as UTF-8."""
    def replace(match):
        if match.group(1):
            return bytes.fromhex(match.group(1).replace('\\', '')).decode('utf-8', errors='replace')
        return match.group(2)
    return _DN_ESCAPE.sub(replace, value)


def member_filter(member_dn: str) -> Optional[str]:
    """
    Build a search filter from the first RDN of a member DN.

    ``uid=bob,ou=people,dc=example,dc=com`` becomes ``(uid=bob)`` and
    ``cn=Doe\\, John,ou=people`` becomes ``(cn=Doe, John)``.
    Returns None when the DN cannot be parsed.
    """
    try:
        attribute, value, _ = parse_dn(member_dn or '', strip=True)[0]
    except LDAPException:
        return None

    value = _unescape_dn_value(value)
    if not attribute or not value:
        return None
    return f"({attribute}={escape_filter_chars(value)})"


class DirectorySearcher:
    """
    Runs service-account searches over one DirectoryConnection.

    Supports user-filter mode, group-filter mode with per-member expansion,
    and unique lookups by attribute value.
    """

    def __init__(self, config: DirectoryConfig, connection: DirectoryConnection):
        self.config = config
        self.connection = connection

    def bind_service(self):
        """Bind the configured service account; raises BindError on rejection."""
        self.connection.bind_service(self.config.bind_dn, self.config.bind_password)

    def search_users(self) -> List[RemoteUser]:
        """
        Return every user matching the configured user filter.

        An empty user filter means user-filter mode is not configured.
        """
        if not self.config.user_filter:
            logger.debug("No user filter configured, skipping user search")
            return []

        entries = self.connection.search(self.config.user_filter, self.config.attributes.user_attributes())
        users = [extract_user(self.config, entry) for entry in entries]
        logger.info(f"User filter matched {len(users)} entries")
        return users

    def search_groups(self) -> List[RemoteUser]:
        """
        Return every user that is a member of a group matching the group filter.

        Each member DN costs one extra search. Members whose search fails or
        finds nothing are skipped.
        """
        if not self.config.group_filter:
            logger.debug("No group filter configured, skipping group search")
            return []

        member_attribute = self.config.attributes.group_member
        groups = self.connection.search(self.config.group_filter, self.config.attributes.group_attributes())
        logger.info(f"Group filter matched {len(groups)} groups")

        users = []
        for group in groups:
            member_dns = group.values(member_attribute)
            if not member_dns:
                logger.debug(f"No members found in group {group.dn}")
                continue

            logger.debug(f"Found {len(member_dns)} members in group {group.dn}")
            for member_dn in member_dns:
                users.extend(self._search_member(member_dn))

        logger.info(f"Group filter resolved {len(users)} member entries")
        return users

    def _search_member(self, member_dn: str) -> List[RemoteUser]:
        search_filter = member_filter(member_dn)
        if not search_filter:
            logger.debug(f"Skipping member with unusable DN: {member_dn!r}")
            return []

        try:
            entries = self.connection.search(search_filter, self.config.attributes.user_attributes())
        except SearchError as e:
            logger.debug(f"Skipping member {member_dn}: {e}")
            return []

        if not entries:
            logger.debug(f"Skipping member {member_dn}: no matching entry")
        return [extract_user(self.config, entry) for entry in entries]

    def find_unique(self, attribute: str, value: str) -> DirectoryEntry:
        """
        Find the single entry whose attribute equals value.

        Raises:
            NotFoundError: If no entry matches
            AmbiguousMatchError: If more than one entry matches
            SearchError: If the search itself fails
        """
        search_filter = f"({attribute}={escape_filter_chars(value)})"
        entries = self.connection.search(search_filter, self.config.attributes.user_attributes())

        if not entries:
            raise NotFoundError(f"No entry matched {search_filter}")
        if len(entries) > 1:
            raise AmbiguousMatchError(f"{len(entries)} entries matched {search_filter}")
        return entries[0]


def fetch_remote_users(config: DirectoryConfig) -> Tuple[List[RemoteUser], List[RemoteUser]]:
    """
    Run user-filter and group-filter searches over one service-bound connection.

    Returns:
        Tuple of (user-filter results, group-filter results)

    Raises:
        DirectoryError: If connecting, binding or a top-level search fails
    """
    with establish(config) as connection:
        searcher = DirectorySearcher(config, connection)
        searcher.bind_service()
        user_mode = searcher.search_users()
        group_mode = searcher.search_groups()
    return user_mode, group_mode


def check_connection(config: DirectoryConfig) -> bool:
    """
    Verify the server is reachable and accepts the service account.

    Raises:
        DirectoryError: If connecting or binding fails
    """
    with establish(config) as connection:
        DirectorySearcher(config, connection).bind_service()
    logger.info(f"Successfully connected and bound to LDAP server {config.address}")
    return True
