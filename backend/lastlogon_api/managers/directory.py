from ldap3 import Server, Connection, ALL, NONE, SUBTREE, BASE, NTLM, SIMPLE
from ldap3.core.exceptions import (
    LDAPException,
    LDAPSocketOpenError,
    LDAPSocketReceiveError,
    LDAPSocketSendError,
    LDAPSessionTerminatedByServerError,
)
from ldap3.utils.conv import escape_filter_chars
import logging
from typing import List, Optional

from ..errors import DirectoryConnectionError, EnumerationFailed, ServerQueryFailed, ServerUnreachable
from ..schemas import AccountLookup, ServerObservation

from .base import DirectoryClient, looks_like_dn, split_identifier, when_created_or_none

logger = logging.getLogger(__name__)

UF_SERVER_TRUST_ACCOUNT = 8192
UF_PARTIAL_SECRETS_ACCOUNT = 67108864  # read-only DCs

DC_FILTER = (
    '(&(objectCategory=computer)'
    f'(|(userAccountControl:1.2.840.113556.1.4.803:={UF_SERVER_TRUST_ACCOUNT})'
    f'(userAccountControl:1.2.840.113556.1.4.803:={UF_PARTIAL_SECRETS_ACCOUNT})))'
)
USER_FILTER = '(&(objectCategory=person)(objectClass=user){})'

BASE_ATTRIBUTES = ['displayName', 'name', 'sAMAccountName', 'lastLogon']
EXTENDED_ATTRIBUTES = ['description', 'whenCreated']

UNREACHABLE_ERRORS = (
    LDAPSocketOpenError,
    LDAPSocketReceiveError,
    LDAPSocketSendError,
    LDAPSessionTerminatedByServerError,
)


def identity_filter(identifier: str) -> str:
    """LDAP filter matching an account by DN, UPN or sAMAccountName."""
    if looks_like_dn(identifier):
        clause = f'(distinguishedName={escape_filter_chars(identifier)})'
    else:
        _, name = split_identifier(identifier)
        if '@' in name:
            clause = f'(userPrincipalName={escape_filter_chars(name)})'
        else:
            clause = f'(sAMAccountName={escape_filter_chars(name)})'
    return USER_FILTER.format(clause)


def requested_attributes(include_extended: bool) -> List[str]:
    if include_extended:
        return BASE_ATTRIBUTES + EXTENDED_ATTRIBUTES
    return list(BASE_ATTRIBUTES)


def _value(entry, attribute):
    if attribute not in entry:
        return None
    value = entry[attribute].value
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text(entry, attribute) -> Optional[str]:
    value = _value(entry, attribute)
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='replace')
    return str(value)


class LdapDirectoryClient(DirectoryClient):
    """Directory client over ldap3.

    The bound session on AD_SERVER answers existence checks and DC
    enumeration. Every per-DC query opens its own short-lived connection to
    that DC, since lastLogon is only meaningful on the DC that recorded it.
    """

    backend = 'ldap'

    def __init__(self, host, username=None, password=None, base_dn=None, use_ssl=False, timeout=15):
        super().__init__(timeout=timeout)
        self.host = host
        self.username = username
        self.password = password
        self.base_dn = base_dn
        self.use_ssl = use_ssl
        self.connection = None

    @property
    def authentication(self):
        return NTLM if self.username and '\\' in self.username else SIMPLE

    def _connect(self, host, get_info):
        server = Server(host, use_ssl=self.use_ssl, get_info=get_info, connect_timeout=self.timeout)
        return Connection(
            server,
            user=self.username,
            password=self.password,
            authentication=self.authentication,
            auto_bind=True,
            read_only=True,
            receive_timeout=self.timeout,
        )

    def open(self):
        if not self.host:
            raise DirectoryConnectionError('AD_SERVER is not configured')
        try:
            self.connection = self._connect(self.host, ALL)
        except LDAPException as e:
            raise DirectoryConnectionError(f'Bind to {self.host} failed: {e}') from e

        if not self.base_dn:
            self.base_dn = self._default_naming_context()
        logger.info(f"Connected to AD {self.host} (base DN {self.base_dn})")

    def _default_naming_context(self):
        info = getattr(self.connection.server, 'info', None)
        other = getattr(info, 'other', None) or {}
        context = other.get('defaultNamingContext')
        if not context:
            raise DirectoryConnectionError(f'{self.host} did not report a defaultNamingContext; set AD_BASE_DN')
        return context[0] if isinstance(context, (list, tuple)) else str(context)

    def close(self):
        if self.connection is None:
            return
        try:
            self.connection.unbind()
        except LDAPException as e:
            logger.debug(f"Unbind from {self.host} failed: {e}")
        self.connection = None

    def _require_connection(self):
        if self.connection is None:
            raise DirectoryConnectionError('Directory client is not open')
        return self.connection

    def lookup_account(self, identifier: str) -> AccountLookup:
        conn = self._require_connection()
        try:
            conn.search(search_base=self.base_dn, search_filter=identity_filter(identifier),
                        search_scope=SUBTREE, attributes=['distinguishedName'])
        except LDAPException as e:
            raise DirectoryConnectionError(f'Lookup of {identifier} failed: {e}') from e

        entries = list(conn.entries)
        if not entries:
            return AccountLookup(identifier=identifier, exists=False)
        if len(entries) > 1:
            logger.warning(f"{len(entries)} accounts match '{identifier}', using the first")
        dn = _text(entries[0], 'distinguishedName') or str(entries[0].entry_dn)
        return AccountLookup(identifier=identifier, exists=True, distinguished_name=dn)

    def list_auth_servers(self) -> List[str]:
        try:
            conn = self._require_connection()
            conn.search(search_base=self.base_dn, search_filter=DC_FILTER, search_scope=SUBTREE,
                        attributes=['cn', 'dNSHostName'], paged_size=1000)
        except (LDAPException, DirectoryConnectionError) as e:
            raise EnumerationFailed(f'Could not list domain controllers: {e}') from e

        servers = []
        seen = set()
        for entry in conn.entries:
            name = _text(entry, 'dNSHostName') or _text(entry, 'cn')
            if name and name.lower() not in seen:
                seen.add(name.lower())
                servers.append(name)
        return servers

    def query_account_on_server(self, identifier: str, server: str, include_extended: bool = False,
                                distinguished_name: Optional[str] = None) -> ServerObservation:
        attributes = requested_attributes(include_extended)
        conn = None
        try:
            # No schema: lastLogon comes back as the raw tick count
            conn = self._connect(server, NONE)
            if distinguished_name:
                conn.search(search_base=distinguished_name, search_filter='(objectClass=user)',
                            search_scope=BASE, attributes=attributes)
            else:
                conn.search(search_base=self.base_dn, search_filter=identity_filter(identifier),
                            search_scope=SUBTREE, attributes=attributes)
            entries = list(conn.entries)
        except UNREACHABLE_ERRORS as e:
            raise ServerUnreachable(server, identifier, str(e)) from e
        except LDAPException as e:
            raise ServerQueryFailed(server, identifier, str(e)) from e
        finally:
            if conn is not None:
                try:
                    conn.unbind()
                except LDAPException as e:
                    logger.debug(f"Unbind from {server} failed: {e}")

        if not entries:
            raise ServerQueryFailed(server, identifier, 'account not present on this DC')

        entry = entries[0]
        return ServerObservation(
            account=identifier,
            server=server,
            display_name=_text(entry, 'displayName') or _text(entry, 'name') or _text(entry, 'sAMAccountName'),
            raw_last_logon=_value(entry, 'lastLogon'),
            description=_text(entry, 'description') if include_extended else None,
            when_created=when_created_or_none(_value(entry, 'whenCreated'), server, identifier) if include_extended else None,
        )
