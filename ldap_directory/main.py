"""
Directory operations and command line entry point for LDAP Directory Integration.

This module exposes the three operations offered to callers (preview, sync
and authenticate) on top of the searcher, reconciler and authenticator, and a
small command line interface that runs them from a YAML configuration file.
"""

import os
import sys
import json
import getpass
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Iterable, Optional

import yaml

from ldap_directory.auth import verify_credentials
from ldap_directory.config import DirectoryConfig, load_config, ConfigurationError
from ldap_directory.ldap_client import DirectoryError, fetch_remote_users, check_connection
from ldap_directory.logging_setup import setup_logging, security_logger
from ldap_directory.models import ReconciledUser
from ldap_directory.reconcile import SyncPlan, reconcile_users, plan_sync

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 100


@dataclass
class PreviewResult:
    users: List[ReconciledUser] = field(default_factory=list)
    message: str = ''
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'isError': self.is_error,
            'users': [user.to_dict() for user in self.users]
        }


@dataclass
class SyncResult:
    plan: Optional[SyncPlan] = None
    message: str = ''
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = {'message': self.message, 'isError': self.is_error}
        if self.plan is not None:
            result['add'] = [user.to_dict() for user in self.plan.to_add]
            result['deactivate'] = list(self.plan.to_deactivate)
        return result


class DirectoryService:
    """
    Runs directory operations for one configuration.

    Every operation opens and closes its own connection; nothing is shared
    between calls, so one service may be used from several threads.
    """

    def __init__(self, config: DirectoryConfig):
        self.config = config

    def fetch_users(self) -> List[ReconciledUser]:
        """
        Fetch and reconcile every user selected by the user and group filters.

        Raises:
            DirectoryError: If the directory operation fails
        """
        user_mode, group_mode = fetch_remote_users(self.config)
        return reconcile_users(self.config, user_mode, group_mode)

    def preview(self) -> PreviewResult:
        """Reconcile users without committing anything, returning at most PREVIEW_LIMIT users."""
        logger.info("Fetching LDAP users")
        result = PreviewResult()

        try:
            users = self.fetch_users()
        except DirectoryError as e:
            result.message = f"Error: unable fetch users from LDAP: {e}"
            result.is_error = True
            logger.error(result.message)
            return result

        result.message = f"Sync'ed with LDAP, found {len(users)} users"
        result.users = users[:PREVIEW_LIMIT]
        logger.info(result.message)
        return result

    def sync(self, local_users: Iterable[Any]) -> SyncResult:
        """
        Compute the changes needed to align the local population with the directory.

        Applying the returned plan is up to the caller.
        """
        result = SyncResult()

        try:
            users = self.fetch_users()
        except DirectoryError as e:
            result.message = f"Error: unable to fetch users from LDAP: {e}"
            result.is_error = True
            logger.error(result.message)
            return result

        result.plan = plan_sync(users, local_users)
        result.message = (f"LDAP sync found {len(users)} users, {len(result.plan.to_add)} new users added, "
                          f"{len(result.plan.to_deactivate)} users deactivated")
        logger.info(result.message)
        return result

    def authenticate(self, username: str, password: str) -> bool:
        """Verify a user's password; only True or False ever leaves this method."""
        outcome = verify_credentials(self.config, username, password)
        security_logger.log_authentication_attempt('ldap', username, outcome.success, outcome.reason or "")
        return outcome.success

    def health_check(self) -> Dict[str, Any]:
        """
        Check that the directory is reachable with the service account.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            check_connection(self.config)
            health_status['checks']['ldap'] = {
                'status': 'pass',
                'message': 'LDAP connection successful'
            }
        except DirectoryError as e:
            health_status['checks']['ldap'] = {
                'status': 'fail',
                'message': f'LDAP connection failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        return health_status


def preview(config: DirectoryConfig) -> PreviewResult:
    """Preview the reconciled user set for a configuration."""
    return DirectoryService(config).preview()


def sync(config: DirectoryConfig, local_users: Iterable[Any]) -> SyncResult:
    """Compute the sync plan for a configuration against local users."""
    return DirectoryService(config).sync(local_users)


def authenticate_user(config: DirectoryConfig, username: str, password: str) -> bool:
    """Verify a user's password against the directory."""
    return DirectoryService(config).authenticate(username, password)


def _load_local_users(path: Optional[str]) -> List[Dict[str, Any]]:
    if not path:
        return []
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or []
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Unable to read local users file {path}: {e}")
    if not isinstance(data, list):
        raise ConfigurationError(f"Local users file must contain a list: {path}")
    return data


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description='LDAP Directory Integration')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument('--preview', action='store_true',
                        help='List up to 100 reconciled directory users')
    action.add_argument('--sync', action='store_true',
                        help='Compare directory users with local users')
    action.add_argument('--authenticate', metavar='USERNAME',
                        help='Verify a user password against the directory')
    action.add_argument('--health-check', action='store_true',
                        help='Check connectivity and the service account bind')
    parser.add_argument('--local-users', metavar='FILE',
                        help='YAML list of local users (email, active) used by --sync')

    args = parser.parse_args()

    try:
        config = load_config(args.config)
        local_users = _load_local_users(args.local_users) if args.sync else []
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config.get('logging', {}))
    service = DirectoryService(config['ldap'])

    if args.health_check:
        health_status = service.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.preview:
        result = service.preview()
        print(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.is_error else 0)

    elif args.sync:
        result = service.sync(local_users)
        print(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.is_error else 0)

    else:
        password = os.getenv('LDAP_USER_PASSWORD') or getpass.getpass('Password: ')
        authenticated = service.authenticate(args.authenticate, password)
        print(json.dumps({'authenticated': authenticated}))
        sys.exit(0 if authenticated else 1)


if __name__ == "__main__":
    main()
