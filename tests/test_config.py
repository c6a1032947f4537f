#!/usr/bin/env python3
"""
Unit tests for configuration module.

Covers configuration loading, validation, defaults, environment variable
overrides and loading of the desired-state file.
"""

import os
import sys
import tempfile
import yaml
import unittest
from unittest.mock import patch
from typing import Dict, Any

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap7.config import ConfigLoader, ConfigurationError, load_config, load_desired_state
from ldap7.models import Group, User


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        """Set up test fixtures."""
        self.valid_config = {
            'ldap': {
                'server_url': 'ldap://localhost:389',
                'bind_dn': 'uid=churros,ou=services,dc=inpt,dc=fr',
                'bind_password': 'ldapdev',
                'base_dn': 'dc=inpt,dc=fr',
            },
            'logging': {
                'level': 'DEBUG',
                'log_dir': 'logs',
            },
            'sync': {
                'data_file': 'directory.yaml',
            }
        }
        self.temp_files = []

    def tearDown(self):
        for path in self.temp_files:
            os.unlink(path)

    def create_test_file(self, data: Any, suffix: str = '.yaml') -> str:
        """Create a temporary YAML file with the given data."""
        with tempfile.NamedTemporaryFile(mode='w', suffix=suffix, delete=False) as f:
            if isinstance(data, str):
                f.write(data)
            else:
                yaml.safe_dump(data, f)
        self.temp_files.append(f.name)
        return f.name

    def test_valid_config(self):
        config = ConfigLoader(self.create_test_file(self.valid_config)).load()

        self.assertEqual(config['ldap']['base_dn'], 'dc=inpt,dc=fr')
        self.assertEqual(config['logging']['level'], 'DEBUG')

    def test_defaults_applied(self):
        config = load_config(self.create_test_file(self.valid_config))

        self.assertFalse(config['ldap']['start_tls'])
        self.assertTrue(config['ldap']['verify_ssl'])
        self.assertEqual(config['logging']['retention_days'], 7)
        self.assertEqual(config['logging']['rotation'], 'daily')
        self.assertEqual(config['logging']['audit_file'], 'audit.log')
        self.assertEqual(config['ldap']['page_size'], 500)
        self.assertEqual(config['sync']['uid_min'], 10000)
        self.assertEqual(config['sync']['uid_max'], 100000000)

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader('/nonexistent/config.yaml').load()

        self.assertIn('not found', str(context.exception))

    def test_invalid_yaml(self):
        path = self.create_test_file("ldap: [unclosed\n")

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(path).load()

        self.assertIn('Invalid YAML', str(context.exception))

    def test_missing_required_fields_are_all_reported(self):
        del self.valid_config['ldap']['bind_password']
        del self.valid_config['ldap']['base_dn']

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self.create_test_file(self.valid_config)).load()

        message = str(context.exception)
        self.assertIn('bind_password', message)
        self.assertIn('base_dn', message)

    def test_bad_server_url(self):
        self.valid_config['ldap']['server_url'] = 'http://ldap.example.com'

        with self.assertRaises(ConfigurationError):
            ConfigLoader(self.create_test_file(self.valid_config)).load()

    def test_ssl_and_start_tls_exclusive(self):
        self.valid_config['ldap'].update({'use_ssl': True, 'start_tls': True})

        with self.assertRaises(ConfigurationError):
            ConfigLoader(self.create_test_file(self.valid_config)).load()

    def test_page_size_validation(self):
        self.valid_config['ldap']['page_size'] = 0

        with self.assertRaises(ConfigurationError) as context:
            ConfigLoader(self.create_test_file(self.valid_config)).load()

        self.assertIn('page_size', str(context.exception))

    def test_uid_range_validation(self):
        self.valid_config['sync'].update({'uid_min': 50000, 'uid_max': 40000})

        with self.assertRaises(ConfigurationError):
            ConfigLoader(self.create_test_file(self.valid_config)).load()

        self.valid_config['sync'].update({'uid_min': 50000, 'uid_max': 100000001})

        with self.assertRaises(ConfigurationError):
            ConfigLoader(self.create_test_file(self.valid_config)).load()

    @patch.dict(os.environ, {'LDAP_BIND_PASSWORD': 'from-env'})
    def test_env_override_password(self):
        del self.valid_config['ldap']['bind_password']

        config = ConfigLoader(self.create_test_file(self.valid_config)).load()

        self.assertEqual(config['ldap']['bind_password'], 'from-env')

    def test_config_path_from_env(self):
        path = self.create_test_file(self.valid_config)

        with patch.dict(os.environ, {'CONFIG_PATH': path}):
            loader = ConfigLoader()

        self.assertEqual(loader.config_path, path)


class TestLoadDesiredState(unittest.TestCase):
    """Test cases for the desired-state file."""

    def setUp(self):
        self.temp_files = []

    def tearDown(self):
        for path in self.temp_files:
            os.unlink(path)

    def create_test_file(self, data: Dict[str, Any]) -> str:
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.safe_dump(data, f)
        self.temp_files.append(f.name)
        return f.name

    def test_load_desired_state(self):
        path = self.create_test_file({
            'schools': ['n7', 'ensat'],
            'groups': [
                {'name': 'net7', 'school': 'n7', 'gid_number': 1001, 'members': ['versairea']},
                {'name': 'bde', 'school': 'ensat', 'gid_number': 1002},
            ],
            'users': [
                {
                    'uid': 'versairea',
                    'first_name': 'Annie',
                    'last_name': 'Versaire',
                    'email': 'hello@ldap7.net',
                    'school': 'n7',
                },
            ],
        })

        state = load_desired_state(path)

        self.assertEqual(state.schools, ['n7', 'ensat'])
        self.assertEqual(state.groups[0], Group('net7', 'n7', 1001, ['versairea']))
        self.assertEqual(state.groups[1].members, [])
        self.assertIsInstance(state.users[0], User)
        self.assertEqual(state.users[0].email, ['hello@ldap7.net'])
        self.assertEqual(state.users[0].schools, ['n7'])

    def test_empty_file(self):
        path = self.create_test_file({})

        state = load_desired_state(path)

        self.assertEqual((state.schools, state.groups, state.users), ([], [], []))

    def test_malformed_entry(self):
        path = self.create_test_file({'groups': [{'name': 'net7'}]})

        with self.assertRaises(ConfigurationError):
            load_desired_state(path)


if __name__ == '__main__':
    unittest.main()
