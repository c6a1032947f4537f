"""
Domain records synchronized into the directory.

Schools are plain identifier strings; groups and users are dataclasses that
can be built from the dictionaries found in a desired-state YAML file.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Union


@dataclass
class Group:
    """A POSIX group living under a school."""

    name: str
    school: str
    gid_number: int
    members: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Group':
        return cls(
            name=str(data['name']),
            school=str(data['school']),
            gid_number=int(data['gid_number']),
            members=[str(member) for member in data.get('members') or []],
        )


@dataclass
class User:
    """
    A person account under ou=people.

    ``password`` is expected to be already hashed (see
    :func:`ldap7.users.hash_password`). ``school`` accepts a single school
    identifier or a list of them; an empty list means no affiliation.
    """

    uid: str
    first_name: str
    last_name: str
    email: List[str]
    given_name: Optional[str] = None
    password: Optional[str] = None
    school: Union[str, List[str], None] = None
    ssh_keys: List[str] = field(default_factory=list)
    picture: List[bytes] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def initials(self) -> str:
        return self.first_name[:1] + self.last_name[:1]

    @property
    def schools(self) -> List[str]:
        if self.school is None:
            return []
        if isinstance(self.school, str):
            return [self.school]
        return list(self.school)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        email = data.get('email') or []
        if isinstance(email, str):
            email = [email]

        picture = data.get('picture') or []
        if isinstance(picture, bytes):
            picture = [picture]

        return cls(
            uid=str(data['uid']),
            first_name=str(data['first_name']),
            last_name=str(data['last_name']),
            email=list(email),
            given_name=data.get('given_name'),
            password=data.get('password'),
            school=data.get('school'),
            ssh_keys=list(data.get('ssh_keys') or []),
            picture=list(picture),
        )


@dataclass
class DesiredState:
    """Everything the directory should contain after a sync."""

    schools: List[str] = field(default_factory=list)
    groups: List[Group] = field(default_factory=list)
    users: List[User] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DesiredState':
        data = data or {}
        return cls(
            schools=[str(school) for school in data.get('schools') or []],
            groups=[Group.from_dict(group) for group in data.get('groups') or []],
            users=[User.from_dict(user) for user in data.get('users') or []],
        )
