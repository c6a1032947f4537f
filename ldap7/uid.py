"""
Allocation of POSIX uidNumbers.

The allocator bisects the search range, probing the directory for the
midpoint. It assumes numbers are handed out from the bottom of the range
upwards, so the occupied ids form a prefix and the first gap is the answer.
"""

import logging

from ldap7.client import DirectoryClient, DirectoryError

logger = logging.getLogger(__name__)

UID_MIN = 10000
UID_MAX = 100000000


class UidAllocationError(DirectoryError):
    """Raised when no free uidNumber can be found."""
    pass


def uid_number_in_use(client: DirectoryClient, uid_number: int) -> bool:
    """Check whether any account under ou=people holds ``uid_number``."""
    entries = client.search(
        client.dn('ou=people'),
        f"(uidNumber={int(uid_number)})",
        scope='SUBTREE',
        attributes=['uidNumber']
    )
    return len(entries) > 0


def find_next_uid_number(client: DirectoryClient, minimum: int = UID_MIN,
                         maximum: int = UID_MAX) -> int:
    """
    Find the next available uidNumber using a binary search.

    Args:
        client: Connected directory client
        minimum: Lowest candidate, inclusive
        maximum: Highest candidate, inclusive

    Returns:
        A uidNumber no account currently uses

    Raises:
        UidAllocationError: If the range is exhausted or the search converges
            on an occupied id
    """
    if maximum > UID_MAX:
        raise UidAllocationError("No available UIDs")
    if minimum > maximum:
        raise UidAllocationError(f"Empty UID range [{minimum}, {maximum}]")

    low, high = minimum, maximum
    while True:
        middle = (low + high) // 2
        in_use = uid_number_in_use(client, middle)

        if low == high:
            if in_use:
                raise UidAllocationError(
                    f"An error occurred while searching for the next available UID number "
                    f"(converged on {middle}, which is taken)"
                )
            logger.debug(f"Allocated uidNumber {middle}")
            return middle

        if in_use:
            low = middle + 1
        else:
            high = middle
