"""
Person accounts stored under ou=people.

New accounts start sandboxed (home in /tmp, shell /bin/none) and are promoted
to a real home directory and /bin/bash once they belong to a school. They are
never demoted automatically.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ldap3.utils.conv import escape_filter_chars
from passlib.hash import sha512_crypt
from unidecode import unidecode

from ldap7.client import DirectoryClient, DirectoryOperationError, rdn, rdn_value
from ldap7.models import User
from ldap7.reconcile import SyncResult, reconcile
from ldap7.uid import UID_MAX, UID_MIN, find_next_uid_number

logger = logging.getLogger(__name__)

USER_OBJECT_CLASSES = [
    'inetOrgPerson',
    'organizationalPerson',
    'posixAccount',
    'shadowAccount',
    'ldapPublicKey',
]

DEFAULT_GID_NUMBER = '1000'
SANDBOX_HOME = '/tmp'
SANDBOX_SHELL = '/bin/none'
FULL_SHELL = '/bin/bash'


def hash_password(password: str) -> str:
    """Hash a password with SHA-512 in crypt(3) format, ready for userPassword."""
    return '{CRYPT}' + sha512_crypt.using(rounds=5000, salt_size=16).hash(password)


def latinize(text: str) -> str:
    """Transliterate to ASCII, as gecos expects ('Łukasz' becomes 'Lukasz')."""
    return unidecode(text)


def user_dn(client: DirectoryClient, uid: str) -> str:
    return client.dn(rdn('uid', uid), 'ou=people')


def home_directory(uid: str) -> str:
    return f"/home/{uid}"


def _first(entry: Dict[str, Any], attribute: str) -> Optional[Any]:
    for name, values in entry.items():
        if name.lower() == attribute.lower():
            return values[0] if values else None
    return None


def _find_user_entries(client: DirectoryClient, uid: str) -> List[Dict[str, Any]]:
    return client.search(
        client.dn('ou=people'),
        f"(uid={escape_filter_chars(uid)})",
        scope='SUBTREE',
        attributes=['uid', 'homeDirectory', 'loginShell']
    )


def _identity_attributes(user: User) -> Dict[str, List[Any]]:
    """Attributes rewritten on every upsert."""
    return {
        'cn': [user.full_name],
        'sn': [user.last_name],
        'displayName': [user.full_name],
        'givenName': [user.given_name or user.first_name],
        'initials': [user.initials],
        'mail': list(user.email),
        'gecos': [latinize(user.full_name)],
    }


def upsert_user(client: DirectoryClient, user: User, uid_range=(UID_MIN, UID_MAX)):
    """
    Create or update a user.

    Args:
        user: Desired state of the account
        uid_range: Inclusive bounds for a newly allocated uidNumber

    Raises:
        DirectoryOperationError: If several entries share the uid
        ValueError: If a new user has no email address
    """
    logger.debug(f"Upserting user {user.uid}")

    entries = _find_user_entries(client, user.uid)
    if len(entries) > 1:
        raise DirectoryOperationError(f"Multiple users found for uid {user.uid}")

    if entries:
        _update_user(client, user, entries[0])
    else:
        _create_user(client, user, uid_range)

    logger.debug(f"User {user.uid} upserted")


def _update_user(client: DirectoryClient, user: User, entry: Dict[str, Any]):
    logger.debug(f"User {user.uid} already exists, updating")

    changes = _identity_attributes(user)

    if user.password:
        changes['userPassword'] = [user.password]

    if user.schools:
        changes['ou'] = user.schools

        if _first(entry, 'homeDirectory') == SANDBOX_HOME or _first(entry, 'loginShell') == SANDBOX_SHELL:
            logger.info(f"Promoting user {user.uid} to a full account")
            changes['homeDirectory'] = [home_directory(user.uid)]
            changes['loginShell'] = [FULL_SHELL]

    if user.ssh_keys:
        changes['sshPublicKey'] = list(user.ssh_keys)

    if user.picture:
        changes['jpegPhoto'] = list(user.picture)

    client.modify(user_dn(client, user.uid), changes)


def _create_user(client: DirectoryClient, user: User, uid_range):
    logger.info(f"User {user.uid} does not exist, creating")

    if not user.email:
        raise ValueError(f"Email is required to create user {user.uid}")

    attributes = {'objectClass': list(USER_OBJECT_CLASSES), 'uid': [user.uid]}
    attributes.update(_identity_attributes(user))
    attributes.update({
        'uidNumber': [str(find_next_uid_number(client, *uid_range))],
        'gidNumber': [DEFAULT_GID_NUMBER],
        'homeDirectory': [SANDBOX_HOME],
        'loginShell': [SANDBOX_SHELL],
    })

    if user.password:
        attributes['userPassword'] = [user.password]

    if user.schools:
        # school members get a real home and shell
        attributes['ou'] = user.schools
        attributes['homeDirectory'] = [home_directory(user.uid)]
        attributes['loginShell'] = [FULL_SHELL]

    if user.ssh_keys:
        attributes['sshPublicKey'] = list(user.ssh_keys)

    if user.picture:
        attributes['jpegPhoto'] = list(user.picture)

    client.add(user_dn(client, user.uid), attributes)


def get_user(client: DirectoryClient, uid: str) -> Optional[Dict[str, Any]]:
    """
    Get a user entry.

    Returns:
        The raw entry without its password hash, or None
    """
    logger.debug(f"Getting user {uid}")
    entries = client.search(client.dn('ou=people'), f"(uid={escape_filter_chars(uid)})")
    if not entries:
        return None

    entry = entries[0]
    for name in [name for name in entry if name.lower() == 'userpassword']:
        del entry[name]
    return entry


def delete_user(client: DirectoryClient, uid: str):
    logger.debug(f"Removing user {uid}")
    client.delete(user_dn(client, uid))
    logger.debug(f"User {uid} removed")


def list_users(client: DirectoryClient) -> List[str]:
    """Uids of the accounts directly under ou=people, taken from their RDN."""
    entries = client.search(client.dn('ou=people'), '(uid=*)', scope='LEVEL', attributes=['uid'])

    uids = []
    for entry in entries:
        attribute, value = rdn_value(entry['dn'])
        if attribute.lower() != 'uid':
            logger.warning(f"Skipping account not named by uid: {entry['dn']}")
            continue
        uids.append(value)
    return uids


def sync_users(client: DirectoryClient, users: Iterable[User],
               uid_range=(UID_MIN, UID_MAX)) -> SyncResult:
    """
    Make ou=people contain exactly the given users.

    Every user is upserted so existing accounts pick up changes; accounts not
    in ``users`` are deleted.
    """
    return reconcile(
        'user',
        list(users),
        key=lambda user: user.uid,
        upsert=lambda user: upsert_user(client, user, uid_range),
        list_existing=lambda: list_users(client),
        delete=lambda uid: delete_user(client, uid),
        match=str.lower,
    )
