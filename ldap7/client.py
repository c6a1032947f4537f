"""
Directory client for connecting to and modifying an LDAP directory.

This module wraps an ldap3 connection with the small set of operations the
upsert and sync functions need: search, add, modify and delete, addressed by
distinguished names relative to a configured base DN.
"""

import logging
import re
import ssl
from typing import Dict, List, Any, Optional, Union, Tuple
from ldap3 import (
    Server, Connection, Tls, NONE, BASE, LEVEL, SUBTREE, ALL_ATTRIBUTES,
    MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE,
)
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import RESULT_NO_SUCH_OBJECT, RESULT_SUCCESS
from ldap3.utils.dn import escape_rdn, parse_dn

from ldap7.logging_setup import audit_logger

logger = logging.getLogger(__name__)

SCOPES = {'BASE': BASE, 'LEVEL': LEVEL, 'SUBTREE': SUBTREE}

# RFC 2696 simple paged results
PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'
DEFAULT_PAGE_SIZE = 500

_ESCAPED_CHAR = re.compile(r'\\([0-9A-Fa-f]{2}|.)', re.DOTALL)

MODIFY_OPERATIONS = {
    'add': MODIFY_ADD,
    'delete': MODIFY_DELETE,
    'replace': MODIFY_REPLACE,
}

Changes = Dict[str, Union[List[Any], Tuple[str, List[Any]]]]


class DirectoryError(Exception):
    """Base exception for directory failures."""
    pass


class DirectoryConnectionError(DirectoryError):
    """Raised when connecting or binding to the directory fails."""
    pass


class DirectoryOperationError(DirectoryError):
    """Raised when a directory operation fails."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class EntryNotFoundError(DirectoryOperationError):
    """Raised when the target of an operation does not exist (noSuchObject)."""

    def __init__(self, message: str):
        super().__init__(message, RESULT_NO_SUCH_OBJECT)


def rdn(attribute: str, value: str) -> str:
    """Build an escaped relative distinguished name, e.g. ``uid=jdoe``."""
    return f"{attribute}={escape_rdn(str(value))}"


def _unescape_value(value: str) -> str:
    """Undo RFC 4514 escaping; hex pairs are UTF-8 bytes."""
    raw = bytearray()
    position = 0
    for match in _ESCAPED_CHAR.finditer(value):
        raw += value[position:match.start()].encode('utf-8')
        escaped = match.group(1)
        raw += bytes.fromhex(escaped) if len(escaped) == 2 else escaped.encode('utf-8')
        position = match.end()
    raw += value[position:].encode('utf-8')
    return raw.decode('utf-8')


def rdn_value(dn: str) -> Tuple[str, str]:
    """
    Split the leading RDN of ``dn`` into its attribute and plain value.

    ``rdn_value('o=INP\\+N7,ou=schools,dc=inpt,dc=fr')`` is ``('o', 'INP+N7')``,
    so the value can be compared with ids and passed back to :func:`rdn`.
    """
    attribute, value, _ = parse_dn(dn, escape=False)[0]
    return attribute.strip(), _unescape_value(value)


class DirectoryClient:
    """
    Handle on an LDAP directory.

    A single instance is created per run and passed explicitly to every
    operation. It is not safe for concurrent use; callers serialize access.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize directory client with configuration.

        Args:
            config: LDAP configuration dictionary
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.base_dn = config['base_dn']

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', DEFAULT_PAGE_SIZE)

        self.server = None
        self.connection = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        """
        Open, secure and bind the connection to the LDAP server.

        Returns:
            True if connection successful

        Raises:
            DirectoryConnectionError: If any step of the connection fails
        """
        if self._connected:
            return True

        tls_config = self._create_tls_config()

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=tls_config,
                get_info=NONE,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")

            self.connection = Connection(
                self.server,
                user=self.bind_dn,
                password=self.bind_password,
                auto_bind=False,
                receive_timeout=self.receive_timeout,
                raise_exceptions=False
            )

            if not self.connection.open():
                raise DirectoryConnectionError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise DirectoryConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise DirectoryConnectionError(f"Bind failed: {self.connection.result}")

        except LDAPException as e:
            self._abort_connection()
            raise DirectoryConnectionError(f"Failed to connect to {self.server_url}: {e}")
        except DirectoryConnectionError:
            self._abort_connection()
            raise

        self._connected = True
        audit_logger.log_bind(self.server_url, self.bind_dn, True)
        logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
        return True

    def _abort_connection(self):
        audit_logger.log_bind(self.server_url, self.bind_dn, False)
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Error while discarding connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        # Client certificate for mutual TLS
        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise DirectoryConnectionError(f"Failed to create TLS configuration: {e}")

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def dn(self, *rdns: str) -> str:
        """Join relative DNs (innermost first) with the base DN."""
        return ','.join(list(rdns) + [self.base_dn])

    def _require_connection(self):
        if not self._connected:
            raise DirectoryConnectionError("Not connected to LDAP server")

    def _check_result(self, operation: str, dn: str):
        """Translate a failed ldap3 result into an exception."""
        result = self.connection.result
        code = result.get('result')
        if code == RESULT_SUCCESS:
            return
        description = result.get('description', 'unknown')
        message = result.get('message', '')
        error_msg = f"{operation} {dn} failed: {description} ({code}) {message}".rstrip()
        if code == RESULT_NO_SUCH_OBJECT:
            raise EntryNotFoundError(error_msg)
        raise DirectoryOperationError(error_msg, code)

    def search(self, base: str, search_filter: str = '(objectClass=*)',
               scope: str = 'SUBTREE', attributes=ALL_ATTRIBUTES) -> List[Dict[str, Any]]:
        """
        Search the directory.

        Args:
            base: Absolute DN to search from
            search_filter: LDAP filter string
            scope: One of 'BASE', 'LEVEL' or 'SUBTREE'
            attributes: Attributes to return

        One-level and subtree searches are paged with the simple paged
        results control so listings are not cut off by the server size limit.

        Returns:
            List of entries; each entry maps 'dn' to the entry DN and every
            returned attribute name to its list of values

        Raises:
            EntryNotFoundError: If the search base does not exist
            DirectoryOperationError: If the search fails for another reason
        """
        self._require_connection()
        logger.debug(f"Searching with filter: {search_filter} in base: {base} ({scope})")

        request = {
            'search_base': base,
            'search_filter': search_filter,
            'search_scope': SCOPES[scope],
            'attributes': attributes,
        }
        if scope == 'BASE':
            self._run_search(request)
            return [self._entry_to_dict(entry) for entry in self.connection.entries]

        entries = []
        cookie = None
        page_count = 0
        while True:
            self._run_search(dict(request, paged_size=self.page_size, paged_cookie=cookie))
            entries.extend(self._entry_to_dict(entry) for entry in self.connection.entries)
            page_count += 1

            cookie = self._paged_cookie()
            if not cookie:
                break
            logger.debug(f"Page {page_count}: {len(entries)} entries so far from {base}")

        return entries

    def _run_search(self, request: Dict[str, Any]):
        try:
            self.connection.search(**request)
        except LDAPException as e:
            raise DirectoryOperationError(f"Search {request['search_base']} failed: {e}")
        self._check_result('Search', request['search_base'])

    def _paged_cookie(self) -> Optional[bytes]:
        """Cookie of the paged results control in the last response, if any."""
        controls = self.connection.result.get('controls') or {}
        control = controls.get(PAGED_RESULTS_CONTROL) or {}
        return (control.get('value') or {}).get('cookie')

    def _entry_to_dict(self, entry) -> Dict[str, Any]:
        data = {'dn': str(entry.entry_dn)}
        data.update(entry.entry_attributes_as_dict)
        return data

    def exists(self, dn: str) -> bool:
        """Check whether an entry exists; a missing entry is not an error."""
        try:
            return len(self.search(dn, scope='BASE', attributes=['objectClass'])) > 0
        except EntryNotFoundError:
            return False

    def add(self, dn: str, attributes: Dict[str, Any]):
        """
        Add an entry.

        Args:
            dn: Absolute DN of the new entry
            attributes: Attribute name to value (or list of values); must
                include objectClass
        """
        self._require_connection()
        attributes = dict(attributes)
        object_class = attributes.pop('objectClass')

        try:
            self.connection.add(dn, object_class=object_class, attributes=attributes)
        except LDAPException as e:
            audit_logger.log_entry_operation('add', dn, False)
            raise DirectoryOperationError(f"Add {dn} failed: {e}")

        success = self.connection.result.get('result') == RESULT_SUCCESS
        audit_logger.log_entry_operation('add', dn, success)
        self._check_result('Add', dn)
        logger.debug(f"Added {dn}")

    def modify(self, dn: str, changes: Changes):
        """
        Modify an entry.

        Args:
            dn: Absolute DN of the entry
            changes: Attribute name to a list of values that replaces the
                current ones, or to an ('add' | 'delete' | 'replace', values)
                tuple. Replacing with an empty list removes the attribute.
        """
        self._require_connection()
        ldap_changes = {}
        for attribute, change in changes.items():
            if isinstance(change, tuple):
                operation, values = change
            else:
                operation, values = 'replace', change
            ldap_changes[attribute] = [(MODIFY_OPERATIONS[operation], list(values))]

        try:
            self.connection.modify(dn, ldap_changes)
        except LDAPException as e:
            audit_logger.log_entry_operation('modify', dn, False)
            raise DirectoryOperationError(f"Modify {dn} failed: {e}")

        success = self.connection.result.get('result') == RESULT_SUCCESS
        audit_logger.log_entry_operation('modify', dn, success)
        self._check_result('Modify', dn)
        logger.debug(f"Modified {dn}: {', '.join(sorted(changes))}")

    def delete(self, dn: str):
        """Delete a leaf entry."""
        self._require_connection()

        try:
            self.connection.delete(dn)
        except LDAPException as e:
            audit_logger.log_entry_operation('delete', dn, False)
            raise DirectoryOperationError(f"Delete {dn} failed: {e}")

        success = self.connection.result.get('result') == RESULT_SUCCESS
        audit_logger.log_entry_operation('delete', dn, success)
        self._check_result('Delete', dn)
        logger.debug(f"Deleted {dn}")

    def test_connection(self) -> bool:
        """
        Test LDAP connection without throwing exceptions.

        Returns:
            True if the root DSE could be read, False otherwise
        """
        try:
            if not self._connected:
                self.connect()

            return self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['namingContexts'],
                size_limit=1
            )
        except (DirectoryError, LDAPException) as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get connection statistics and status.

        Returns:
            Dictionary with connection information
        """
        stats = {
            'connected': self._connected,
            'server_url': self.server_url,
            'use_ssl': self.use_ssl,
            'start_tls': self.start_tls,
            'verify_ssl': self.verify_ssl,
            'bind_dn': self.bind_dn,
            'base_dn': self.base_dn,
            'page_size': self.page_size,
        }

        if self.connection:
            stats.update({
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })

        return stats

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
