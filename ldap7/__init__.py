"""
ldap7 - Synchronize schools, groups and users into an LDAP directory.

This package provides idempotent upsert, delete and sync operations for the
organizational entities of a school network, backed by an LDAP server.
"""

__version__ = "1.0.0"
__author__ = "ldap7 Team"
