"""
School entries under ou=schools.

A school is an ``organization`` entry holding an ``ou=groups`` container for
its POSIX groups.
"""

import logging
from typing import Iterable, List

from ldap7.client import DirectoryClient, rdn, rdn_value
from ldap7.reconcile import SyncResult, reconcile

logger = logging.getLogger(__name__)


def school_dn(client: DirectoryClient, uid: str) -> str:
    return client.dn(rdn('o', uid), 'ou=schools')


def school_groups_dn(client: DirectoryClient, uid: str) -> str:
    return client.dn('ou=groups', rdn('o', uid), 'ou=schools')


def create_school(client: DirectoryClient, uid: str) -> bool:
    """
    Create a school if it does not exist yet.

    An existing school is not an error, so synchronization scripts can call
    this repeatedly.

    Returns:
        True if the school was created, False if it already existed
    """
    logger.info(f"Checking if school {uid} exists")

    if client.exists(school_dn(client, uid)):
        logger.info(f"School {uid} already exists")
        return False

    logger.info(f"School {uid} does not exist, creating")
    client.add(school_dn(client, uid), {
        'objectClass': ['organization'],
        'o': uid,
    })
    create_school_layout(client, uid)
    logger.info(f"School {uid} created")
    return True


def create_school_layout(client: DirectoryClient, uid: str):
    """Create the containers every school holds."""
    logger.info(f"Creating ou=groups in school {uid}")
    client.add(school_groups_dn(client, uid), {
        'objectClass': ['organizationalUnit'],
        'ou': 'groups',
    })


def cleanup_school(client: DirectoryClient, uid: str):
    """Delete every group of a school, then its groups container."""
    groups_dn = school_groups_dn(client, uid)
    if not client.exists(groups_dn):
        logger.debug(f"School {uid} has no groups container")
        return

    logger.info(f"Deleting groups in school {uid}")
    for entry in client.search(groups_dn, '(objectClass=posixGroup)', scope='LEVEL', attributes=['cn']):
        client.delete(entry['dn'])

    logger.info(f"Deleting ou=groups in school {uid}")
    client.delete(groups_dn)


def delete_school(client: DirectoryClient, uid: str):
    """Delete a school together with all of its groups."""
    cleanup_school(client, uid)

    logger.info(f"Trying to delete school {uid}")
    client.delete(school_dn(client, uid))
    logger.info(f"School {uid} deleted")


def list_schools(client: DirectoryClient) -> List[str]:
    """School ids as named by each entry's RDN."""
    entries = client.search(client.dn('ou=schools'), '(o=*)', scope='LEVEL', attributes=['o'])

    uids = []
    for entry in entries:
        attribute, value = rdn_value(entry['dn'])
        if attribute.lower() != 'o':
            logger.warning(f"Skipping school not named by o: {entry['dn']}")
            continue
        uids.append(value)
    return uids


def sync_schools(client: DirectoryClient, uids: Iterable[str]) -> SyncResult:
    """
    Make ou=schools contain exactly the given schools.

    Missing schools are created; schools not in ``uids`` are deleted along
    with their groups.
    """
    return reconcile(
        'school',
        list(uids),
        key=lambda uid: uid,
        upsert=lambda uid: create_school(client, uid),
        list_existing=lambda: list_schools(client),
        delete=lambda uid: delete_school(client, uid),
        match=str.lower,
    )
