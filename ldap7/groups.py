"""
POSIX groups stored under ``ou=groups`` of each school.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ldap7.client import DirectoryClient, EntryNotFoundError, rdn, rdn_value
from ldap7.models import Group
from ldap7.reconcile import SyncResult, reconcile
from ldap7.schools import list_schools, school_groups_dn

logger = logging.getLogger(__name__)

GroupKey = Tuple[str, str]


def group_dn(client: DirectoryClient, name: str, school: str) -> str:
    return client.dn(rdn('cn', name), 'ou=groups', rdn('o', school), 'ou=schools')


def upsert_group(client: DirectoryClient, group: Group):
    """
    Create or update a group.

    An existing group gets its gidNumber and member list replaced; an empty
    member list removes every memberUid.
    """
    dn = group_dn(client, group.name, group.school)

    if client.exists(dn):
        logger.info(f"Group {group.name} already exists, updating")
        client.modify(dn, {
            'gidNumber': [str(group.gid_number)],
            'memberUid': list(group.members),
        })
        return

    logger.info(f"Creating group {group.name}")
    attributes = {
        'objectClass': ['posixGroup'],
        'cn': group.name,
        'gidNumber': str(group.gid_number),
    }
    if group.members:
        attributes['memberUid'] = list(group.members)

    client.add(dn, attributes)


def add_member_to_group(client: DirectoryClient, uid: str, group: str, school: str):
    """Add a single memberUid to an existing group."""
    logger.info(f"Adding user {uid} to group {group}")
    client.modify(group_dn(client, group, school), {'memberUid': ('add', [uid])})


def get_group(client: DirectoryClient, name: str, school: str) -> Optional[Dict[str, Any]]:
    try:
        entries = client.search(group_dn(client, name, school), scope='BASE')
    except EntryNotFoundError:
        return None
    return entries[0] if entries else None


def delete_group(client: DirectoryClient, name: str, school: str):
    logger.info(f"Deleting group {name}")
    client.delete(group_dn(client, name, school))


def list_groups(client: DirectoryClient, school: Optional[str] = None) -> List[GroupKey]:
    """
    List (school, name) keys of existing groups.

    Both parts come from RDNs, so they can be passed back to
    :func:`delete_group` unchanged.

    Args:
        school: Restrict to one school; every school when None
    """
    schools = [school] if school is not None else list_schools(client)

    keys = []
    for uid in schools:
        base = school_groups_dn(client, uid)
        try:
            entries = client.search(base, '(objectClass=posixGroup)', scope='LEVEL', attributes=['cn'])
        except EntryNotFoundError:
            logger.debug(f"No groups container at {base}")
            continue

        for entry in entries:
            attribute, name = rdn_value(entry['dn'])
            if attribute.lower() != 'cn':
                logger.warning(f"Skipping group not named by cn: {entry['dn']}")
                continue
            keys.append((uid, name))
    return keys


def _fold_key(group_key: GroupKey) -> GroupKey:
    return group_key[0].lower(), group_key[1].lower()


def sync_groups(client: DirectoryClient, groups: Iterable[Group],
                school: Optional[str] = None) -> SyncResult:
    """
    Make the directory hold exactly the given groups.

    Args:
        groups: Desired groups
        school: Only reconcile this school's groups; when None every group
            under ou=schools is in scope
    """
    groups = list(groups)
    if school is not None:
        stray = [group.name for group in groups if group.school.lower() != school.lower()]
        if stray:
            raise ValueError(f"Groups {stray} do not belong to school {school}")

    return reconcile(
        'group',
        groups,
        key=lambda group: (group.school, group.name),
        upsert=lambda group: upsert_group(client, group),
        list_existing=lambda: list_groups(client, school),
        delete=lambda group_key: delete_group(client, group_key[1], group_key[0]),
        match=_fold_key,
    )
