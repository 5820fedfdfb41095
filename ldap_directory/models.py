"""
Record types shared by the directory searcher, reconciler and authenticator.
"""

from dataclasses import dataclass, asdict
from typing import Dict, List, Any, Optional

# Placeholder used when a directory entry has no first or last name
EMPTY_NAME = 'Empty'


class DirectoryEntry:
    """
    One raw search result: a DN plus its attribute values.

    Attribute names are matched case-insensitively, as LDAP does.
    """

    def __init__(self, dn: str, attributes: Optional[Dict[str, Any]] = None):
        self.dn = dn or ''
        self._attributes: Dict[str, List[str]] = {}
        for name, value in (attributes or {}).items():
            self._attributes[name.lower()] = _as_text_list(value)

    def values(self, name: str) -> List[str]:
        if not name:
            return []
        return list(self._attributes.get(name.lower(), []))

    def value(self, name: str) -> str:
        values = self.values(name)
        return values[0] if values else ''

    def __repr__(self):
        return f"DirectoryEntry(dn={self.dn!r})"


def _as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        value = [value]
    result = []
    for item in value:
        if isinstance(item, bytes):
            item = item.decode('utf-8', errors='replace')
        result.append(str(item))
    return result


@dataclass(frozen=True)
class RemoteUser:
    """A directory user entry normalized through the attribute mapping."""
    firstname: str
    lastname: str
    email: str
    remote_id: str = ''
    cn: str = ''
    dn: str = ''


@dataclass(frozen=True)
class ReconciledUser:
    """A local-user-shaped record derived from one or more RemoteUser values."""
    email: str
    firstname: str
    lastname: str
    initials: str
    editor: bool = False
    active: bool = True
    admin: bool = False
    analytics: bool = False
    view_users: bool = False
    global_admin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def make_initials(*names: str) -> str:
    """Upper-cased first letter of each non-empty name part."""
    return ''.join(name.strip()[0].upper() for name in names if name and name.strip())
