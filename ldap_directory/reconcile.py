"""
Reconciliation of directory users into a de-duplicated, sync-ready user set.

Results from user-filter and group-filter searches are merged by lower-cased
email address and compared with the local user population to work out which
accounts need adding or deactivating. Nothing here persists anything.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping

from ldap_directory.attributes import normalize_email
from ldap_directory.config import DirectoryConfig
from ldap_directory.models import RemoteUser, ReconciledUser, make_initials

logger = logging.getLogger(__name__)


def reconcile_users(config: DirectoryConfig, user_mode: Iterable[RemoteUser],
                    group_mode: Iterable[RemoteUser]) -> List[ReconciledUser]:
    """
    Merge search results into one ReconciledUser per email address.

    The first occurrence of an email wins; entries without an email are dropped.
    Output order follows first-seen order over user-filter then group-filter results.

    Args:
        config: Directory configuration supplying the default editor permission
        user_mode: Users found by the user filter
        group_mode: Users found through group membership

    Returns:
        List of reconciled users
    """
    seen = set()
    reconciled = []
    skipped = 0

    for remote in list(user_mode) + list(group_mode):
        email = normalize_email(remote.email)
        if not email:
            skipped += 1
            continue
        if email in seen:
            continue
        seen.add(email)
        reconciled.append(_to_reconciled(config, remote, email))

    if skipped:
        logger.info(f"Ignored {skipped} directory users without an email address")
    logger.debug(f"Reconciled {len(reconciled)} unique users")
    return reconciled


def _to_reconciled(config: DirectoryConfig, remote: RemoteUser, email: str) -> ReconciledUser:
    return ReconciledUser(
        email=email,
        firstname=remote.firstname,
        lastname=remote.lastname,
        initials=make_initials(remote.firstname, remote.lastname),
        editor=config.default_permission_add_space,
        active=True,
    )


@dataclass
class SyncPlan:
    """Changes needed to bring the local population in line with the directory."""
    to_add: List[ReconciledUser] = field(default_factory=list)
    to_deactivate: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            'to_add': len(self.to_add),
            'to_deactivate': len(self.to_deactivate),
            'unchanged': len(self.unchanged)
        }


def _local_field(user: Any, name: str, default: Any = None) -> Any:
    if isinstance(user, Mapping):
        return user.get(name, default)
    return getattr(user, name, default)


def plan_sync(reconciled: Iterable[ReconciledUser], local_users: Iterable[Any]) -> SyncPlan:
    """
    Compare reconciled directory users with existing local users by email.

    Args:
        reconciled: Output of reconcile_users
        local_users: Local users as objects or mappings exposing ``email``
            and optionally ``active`` (defaults to True)

    Returns:
        SyncPlan listing users to add, emails to deactivate and emails left alone
    """
    reconciled = list(reconciled)
    local_active = {}
    for user in local_users:
        email = normalize_email(_local_field(user, 'email', ''))
        if email:
            local_active[email] = bool(_local_field(user, 'active', True))

    remote_emails = {user.email for user in reconciled}
    plan = SyncPlan()

    for user in reconciled:
        if user.email in local_active:
            plan.unchanged.append(user.email)
        else:
            plan.to_add.append(user)

    for email, active in local_active.items():
        if active and email not in remote_emails:
            plan.to_deactivate.append(email)

    logger.debug(f"Sync plan: {len(plan.to_add)} to add, {len(plan.to_deactivate)} to deactivate, "
                 f"{len(plan.unchanged)} unchanged")
    return plan
