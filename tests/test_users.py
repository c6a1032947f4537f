#!/usr/bin/env python3
"""
Unit tests for person accounts under ou=people.
"""

import os
import sys
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from passlib.hash import sha512_crypt

from fake_directory import FakeDirectory
from ldap7.client import DirectoryOperationError
from ldap7.models import User
from ldap7.users import (
    delete_user, get_user, hash_password, latinize, list_users, sync_users, upsert_user, user_dn,
)


def make_user(**overrides):
    data = dict(
        uid='versairea',
        first_name='Annie',
        last_name='Versaire',
        given_name='Anniversaire',
        email=['hello@ldap7.net'],
        password='{CRYPT}$6$saltsaltsaltsalt$hash',
        ssh_keys=['ssh-ed25519 AAAAplaceholder annie@example.org'],
    )
    data.update(overrides)
    return User(**data)


class TestHashPassword(unittest.TestCase):

    def test_crypt_format(self):
        hashed = hash_password('hello_world')

        self.assertTrue(hashed.startswith('{CRYPT}$6$'))
        salt = hashed[len('{CRYPT}$6$'):].split('$')[0]
        self.assertEqual(len(salt), 16)
        self.assertTrue(sha512_crypt.verify('hello_world', hashed[len('{CRYPT}'):]))

    def test_salt_is_random(self):
        self.assertNotEqual(hash_password('hello_world'), hash_password('hello_world'))


class TestUpsertUser(unittest.TestCase):
    """Test cases for creating and updating users."""

    def setUp(self):
        self.directory = FakeDirectory()

    def entry(self, uid='versairea'):
        return self.directory.get(user_dn(self.directory, uid))

    def test_create_sandboxed_user(self):
        user = make_user()

        upsert_user(self.directory, user)

        entry = self.entry()
        self.assertEqual(entry['uid'], ['versairea'])
        self.assertEqual(entry['cn'], ['Annie Versaire'])
        self.assertEqual(entry['sn'], ['Versaire'])
        self.assertEqual(entry['givenName'], ['Anniversaire'])
        self.assertEqual(entry['displayName'], ['Annie Versaire'])
        self.assertEqual(entry['initials'], ['AV'])
        self.assertEqual(entry['mail'], ['hello@ldap7.net'])
        self.assertEqual(entry['userPassword'], [user.password])
        self.assertEqual(entry['gecos'], ['Annie Versaire'])
        self.assertEqual(entry['uidNumber'], ['10000'])
        self.assertEqual(entry['gidNumber'], ['1000'])
        self.assertEqual(entry['homeDirectory'], ['/tmp'])
        self.assertEqual(entry['loginShell'], ['/bin/none'])
        self.assertEqual(entry['sshPublicKey'], user.ssh_keys)
        self.assertIn('posixAccount', entry['objectClass'])
        self.assertNotIn('ou', entry)

    def test_given_name_defaults_to_first_name(self):
        upsert_user(self.directory, make_user(given_name=None))

        self.assertEqual(self.entry()['givenName'], ['Annie'])

    def test_create_user_with_school(self):
        upsert_user(self.directory, make_user(school='n7'))

        entry = self.entry()
        self.assertEqual(entry['ou'], ['n7'])
        self.assertEqual(entry['homeDirectory'], ['/home/versairea'])
        self.assertEqual(entry['loginShell'], ['/bin/bash'])

    def test_empty_school_list_means_no_school(self):
        upsert_user(self.directory, make_user(school=[]))

        entry = self.entry()
        self.assertNotIn('ou', entry)
        self.assertEqual(entry['homeDirectory'], ['/tmp'])

    def test_create_requires_email(self):
        with self.assertRaises(ValueError):
            upsert_user(self.directory, make_user(email=[]))

        self.assertEqual(list_users(self.directory), [])

    def test_uid_numbers_are_allocated_sequentially(self):
        upsert_user(self.directory, make_user(uid='first'))
        upsert_user(self.directory, make_user(uid='second'))

        self.assertEqual(self.entry('first')['uidNumber'], ['10000'])
        self.assertEqual(self.entry('second')['uidNumber'], ['10001'])

    def test_gecos_is_latinized(self):
        upsert_user(self.directory, make_user(first_name='Élodie', last_name='Müller'))

        entry = self.entry()
        self.assertEqual(entry['cn'], ['Élodie Müller'])
        self.assertEqual(entry['gecos'], ['Elodie Muller'])

    def test_update_promotes_once_school_is_set(self):
        user = make_user()
        upsert_user(self.directory, user)

        user.school = 'n7'
        user.email = user.email + ['toaster@test.com']
        upsert_user(self.directory, user)

        entry = self.entry()
        self.assertEqual(entry['ou'], ['n7'])
        self.assertEqual(entry['mail'], ['hello@ldap7.net', 'toaster@test.com'])
        self.assertEqual(entry['homeDirectory'], ['/home/versairea'])
        self.assertEqual(entry['loginShell'], ['/bin/bash'])
        self.assertEqual(entry['uidNumber'], ['10000'])

    def test_update_never_demotes(self):
        user = make_user(school='n7')
        upsert_user(self.directory, user)

        user.school = None
        upsert_user(self.directory, user)

        entry = self.entry()
        self.assertEqual(entry['homeDirectory'], ['/home/versairea'])
        self.assertEqual(entry['loginShell'], ['/bin/bash'])

    def test_update_keeps_custom_home(self):
        self.directory.add_person('custom', 20000, homeDirectory='/srv/custom', loginShell='/bin/zsh',
                                  cn='x', sn='y')

        upsert_user(self.directory, make_user(uid='custom', school='n7'))

        entry = self.entry('custom')
        self.assertEqual(entry['homeDirectory'], ['/srv/custom'])
        self.assertEqual(entry['loginShell'], ['/bin/zsh'])

    def test_update_without_password_keeps_hash(self):
        upsert_user(self.directory, make_user())
        upsert_user(self.directory, make_user(password=None, last_name='Dupont'))

        entry = self.entry()
        self.assertEqual(entry['userPassword'], ['{CRYPT}$6$saltsaltsaltsalt$hash'])
        self.assertEqual(entry['sn'], ['Dupont'])

    def test_picture(self):
        upsert_user(self.directory, make_user(picture=[b'\xff\xd8jpeg']))

        self.assertEqual(self.entry()['jpegPhoto'], [b'\xff\xd8jpeg'])

    def test_upsert_is_idempotent(self):
        user = make_user(school=['n7', 'ensat'])

        upsert_user(self.directory, user)
        first = dict(self.entry())
        upsert_user(self.directory, user)

        self.assertEqual(self.entry(), first)
        self.assertEqual(list_users(self.directory), ['versairea'])

    def test_duplicate_uid_is_an_error(self):
        self.directory.add('ou=staff,ou=people,dc=inpt,dc=fr', {'objectClass': ['organizationalUnit'], 'ou': 'staff'})
        self.directory.add_person('versairea', 10000)
        self.directory.add('uid=versairea,ou=staff,ou=people,dc=inpt,dc=fr',
                           {'objectClass': ['inetOrgPerson'], 'uid': 'versairea'})

        with self.assertRaises(DirectoryOperationError):
            upsert_user(self.directory, make_user())


class TestGetAndDeleteUser(unittest.TestCase):

    def setUp(self):
        self.directory = FakeDirectory()
        upsert_user(self.directory, make_user())

    def test_get_user_hides_password(self):
        user = get_user(self.directory, 'versairea')

        self.assertEqual(user['uid'], ['versairea'])
        self.assertEqual(user['homeDirectory'], ['/tmp'])
        self.assertNotIn('userPassword', user)
        # the stored entry is untouched
        self.assertIn('userPassword', self.directory.get(user_dn(self.directory, 'versairea')))

    def test_get_missing_user(self):
        self.assertIsNone(get_user(self.directory, 'nobody'))

    def test_delete_user(self):
        delete_user(self.directory, 'versairea')

        self.assertIsNone(get_user(self.directory, 'versairea'))


class TestSyncUsers(unittest.TestCase):

    def setUp(self):
        self.directory = FakeDirectory()

    def test_sync_removes_exactly_the_orphans(self):
        for uid in ('alice', 'bob', 'carol'):
            upsert_user(self.directory, make_user(uid=uid))
        bob_before = dict(self.directory.get(user_dn(self.directory, 'bob')))

        result = sync_users(self.directory, [make_user(uid='bob'), make_user(uid='dave')])

        self.assertEqual(sorted(list_users(self.directory)), ['bob', 'dave'])
        self.assertEqual(sorted(result.deleted), ['alice', 'carol'])
        self.assertEqual(self.directory.get(user_dn(self.directory, 'bob')), bob_before)
        self.assertTrue(result.ok)

    def test_failed_user_is_not_deleted(self):
        upsert_user(self.directory, make_user(uid='alice'))
        self.directory.fail_on.add(('modify', user_dn(self.directory, 'alice')))

        result = sync_users(self.directory, [make_user(uid='alice'), make_user(uid='bob', email=[])])

        self.assertEqual(result.failed, ['alice', 'bob'])
        self.assertEqual(list_users(self.directory), ['alice'])

    def test_sync_matches_uids_ignoring_case(self):
        upsert_user(self.directory, make_user(uid='alice'))

        result = sync_users(self.directory, [make_user(uid='Alice', last_name='Renamed')])

        self.assertEqual(result.deleted, [])
        self.assertEqual(result.upserted, ['Alice'])
        self.assertEqual(list_users(self.directory), ['alice'])
        self.assertEqual(self.directory.get(user_dn(self.directory, 'alice'))['sn'], ['Renamed'])

    def test_sync_uses_uid_range(self):
        sync_users(self.directory, [make_user(uid='alice')], uid_range=(50000, 60000))

        self.assertEqual(self.directory.get(user_dn(self.directory, 'alice'))['uidNumber'], ['50000'])


class TestLatinize(unittest.TestCase):

    def test_latinize(self):
        self.assertEqual(latinize('Zoë Ångström'), 'Zoe Angstrom')
        self.assertEqual(latinize('plain'), 'plain')

    def test_latinize_letters_without_decomposition(self):
        self.assertEqual(latinize('Łukasz Øster-Straße'), 'Lukasz Oster-Strasse')
        self.assertEqual(latinize('Æsa'), 'AEsa')


if __name__ == '__main__':
    unittest.main()
