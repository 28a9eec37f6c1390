import logging
from datetime import datetime, timezone

import pytest
from ldap3 import BASE, NTLM, SIMPLE, SUBTREE
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError

from ..errors import DirectoryConnectionError, EnumerationFailed, ServerQueryFailed, ServerUnreachable
from ..managers import directory
from ..managers.directory import DC_FILTER, LdapDirectoryClient, identity_filter, requested_attributes
from ..services.last_logon import resolve_last_logon


class FakeAttribute:
    def __init__(self, value):
        self.value = value


class FakeEntry:
    def __init__(self, dn, **attributes):
        self.entry_dn = dn
        self._attributes = attributes

    def __contains__(self, name):
        return name in self._attributes

    def __getitem__(self, name):
        return FakeAttribute(self._attributes[name])


class FakeServer:
    def __init__(self, host, use_ssl=False, get_info=None, connect_timeout=None):
        self.host = host
        self.use_ssl = use_ssl
        self.get_info = get_info

        class Info:
            other = {'defaultNamingContext': ['DC=corp,DC=local']}
        self.info = Info()


class FakeLdap:
    """Per-host search handlers standing in for real DCs."""

    def __init__(self):
        self.handlers = {}
        self.unreachable = set()
        self.connections = []

    def connection(self, server, **kwargs):
        if server.host in self.unreachable:
            raise LDAPSocketOpenError(f'socket connection error while opening: timed out ({server.host})')
        conn = FakeConnection(self, server, kwargs)
        self.connections.append(conn)
        return conn


class FakeConnection:
    def __init__(self, ldap, server, kwargs):
        self.ldap = ldap
        self.server = server
        self.kwargs = kwargs
        self.entries = []
        self.searches = []
        self.unbound = False

    def search(self, search_base, search_filter, search_scope=SUBTREE, attributes=None, paged_size=None):
        self.searches.append((search_base, search_filter, search_scope, attributes))
        handler = self.ldap.handlers[self.server.host]
        self.entries = handler(search_base, search_filter, search_scope, attributes)
        return bool(self.entries)

    def unbind(self):
        self.unbound = True


@pytest.fixture
def fake_ldap(monkeypatch):
    ldap = FakeLdap()
    monkeypatch.setattr(directory, 'Server', FakeServer)
    monkeypatch.setattr(directory, 'Connection', ldap.connection)
    return ldap


def test_identity_filter_forms():
    assert identity_filter('alice') == '(&(objectCategory=person)(objectClass=user)(sAMAccountName=alice))'
    assert identity_filter('CORP\\alice').endswith('(sAMAccountName=alice))')
    assert identity_filter('alice@corp.local').endswith('(userPrincipalName=alice@corp.local))')
    assert '(distinguishedName=CN=Alice,OU=Users,DC=corp,DC=local)' in identity_filter('CN=Alice,OU=Users,DC=corp,DC=local')


def test_identity_filter_escapes_special_characters():
    assert '(sAMAccountName=a\\2a)' in identity_filter('a*')
    assert '\\28' in identity_filter('x(y)')


def test_dc_filter_covers_writable_and_read_only_dcs():
    assert ':=8192' in DC_FILTER
    assert ':=67108864' in DC_FILTER


def test_extended_attributes_are_optional():
    assert 'lastLogon' in requested_attributes(False)
    assert 'description' not in requested_attributes(False)
    assert {'description', 'whenCreated'} <= set(requested_attributes(True))


def test_authentication_follows_username_form():
    assert LdapDirectoryClient('dc', username='CORP\\svc').authentication == NTLM
    assert LdapDirectoryClient('dc', username='svc@corp.local').authentication == SIMPLE


def test_open_uses_default_naming_context(fake_ldap):
    client = LdapDirectoryClient('dc0.corp.local', username='CORP\\svc', password='x')
    with client:
        assert client.base_dn == 'DC=corp,DC=local'
        assert client.connection is fake_ldap.connections[0]
        assert client.connection.kwargs['read_only'] is True
    assert fake_ldap.connections[0].unbound


def test_open_without_host_fails():
    with pytest.raises(DirectoryConnectionError):
        LdapDirectoryClient(None).open()


def test_open_bind_failure_is_a_connection_error(fake_ldap):
    fake_ldap.unreachable.add('dc0.corp.local')
    with pytest.raises(DirectoryConnectionError):
        LdapDirectoryClient('dc0.corp.local').open()


def test_lookup_account(fake_ldap):
    dn = 'CN=Alice,OU=Users,DC=corp,DC=local'
    fake_ldap.handlers['dc0'] = lambda base, flt, scope, attrs: (
        [FakeEntry(dn, distinguishedName=dn)] if 'alice' in flt else [])

    with LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local') as client:
        found = client.lookup_account('alice')
        missing = client.lookup_account('nobody')

    assert found.exists and found.distinguished_name == dn
    assert not missing.exists and missing.distinguished_name is None


def test_list_auth_servers_prefers_dns_host_name(fake_ldap):
    fake_ldap.handlers['dc0'] = lambda base, flt, scope, attrs: [
        FakeEntry('CN=DC1', cn='DC1', dNSHostName='dc1.corp.local'),
        FakeEntry('CN=RODC1', cn='RODC1'),
        FakeEntry('CN=DC1dup', cn='DC1', dNSHostName='DC1.corp.local'),
    ]
    with LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local') as client:
        assert client.list_auth_servers() == ['dc1.corp.local', 'RODC1']
        assert client.connection.searches[-1][1] == DC_FILTER


def test_list_auth_servers_failure_is_fatal(fake_ldap):
    def broken(*args):
        raise LDAPException('operationsError')
    fake_ldap.handlers['dc0'] = broken
    with LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local') as client:
        with pytest.raises(EnumerationFailed):
            client.list_auth_servers()


def test_list_auth_servers_requires_open_client():
    with pytest.raises(EnumerationFailed):
        LdapDirectoryClient('dc0').list_auth_servers()


def test_query_by_dn_on_a_specific_dc(fake_ldap):
    dn = 'CN=Alice,OU=Users,DC=corp,DC=local'
    fake_ldap.handlers['dc1'] = lambda base, flt, scope, attrs: [
        FakeEntry(dn, displayName='Alice Example', lastLogon='133540000000000000',
                  description=['Finance'], whenCreated='20190304101530.0Z')]

    client = LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local')
    observation = client.query_account_on_server('alice', 'dc1', include_extended=True, distinguished_name=dn)

    conn = fake_ldap.connections[-1]
    assert conn.searches[0][0] == dn
    assert conn.searches[0][2] == BASE
    assert conn.server.get_info == directory.NONE
    assert conn.unbound
    assert observation.server == 'dc1'
    assert observation.display_name == 'Alice Example'
    assert observation.raw_last_logon == '133540000000000000'
    assert observation.description == 'Finance'
    assert observation.when_created == datetime(2019, 3, 4, 10, 15, 30, tzinfo=timezone.utc)


def test_query_without_dn_searches_the_domain(fake_ldap):
    fake_ldap.handlers['dc1'] = lambda base, flt, scope, attrs: [FakeEntry('CN=Bob', name='Bob', lastLogon='0')]

    client = LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local')
    observation = client.query_account_on_server('bob', 'dc1')

    search = fake_ldap.connections[-1].searches[0]
    assert search[0] == 'DC=corp,DC=local'
    assert 'sAMAccountName=bob' in search[1]
    assert observation.display_name == 'Bob'
    assert observation.description is None


def test_unreachable_dc_raises_server_unreachable(fake_ldap):
    fake_ldap.unreachable.add('dc2')
    client = LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local')
    with pytest.raises(ServerUnreachable) as excinfo:
        client.query_account_on_server('alice', 'dc2')
    assert excinfo.value.server == 'dc2'


def test_account_missing_on_a_dc_is_a_query_failure(fake_ldap):
    fake_ldap.handlers['dc1'] = lambda *args: []
    client = LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local')
    with pytest.raises(ServerQueryFailed):
        client.query_account_on_server('alice', 'dc1')
    assert fake_ldap.connections[-1].unbound


def test_end_to_end_over_fake_dcs(fake_ldap):
    dn = 'CN=Carol,OU=Users,DC=corp,DC=local'

    def home(base, flt, scope, attrs):
        if 'userAccountControl' in flt:
            return [FakeEntry('CN=DC1', cn='DC1', dNSHostName='dc1'), FakeEntry('CN=DC2', cn='DC2', dNSHostName='dc2')]
        return [FakeEntry(dn, distinguishedName=dn)] if 'carol' in flt else []

    fake_ldap.handlers['dc0'] = home
    fake_ldap.unreachable.add('dc1')
    fake_ldap.handlers['dc2'] = lambda *args: [FakeEntry(dn, displayName='Carol', lastLogon='132539328000000000')]

    with LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local') as client:
        report = resolve_last_logon(client, ['carol', 'nobody'])

    assert [r.account for r in report.results] == ['carol']
    assert report.results[0].source_server == 'dc2'
    assert report.results[0].last_logon == datetime(2021, 1, 1, tzinfo=timezone.utc)
    assert report.not_found == ['nobody']
    assert [w.server for w in report.warnings] == ['dc1']


def test_malformed_when_created_keeps_the_last_logon(fake_ldap, caplog):
    dn = 'CN=Alice,OU=Users,DC=corp,DC=local'
    fake_ldap.handlers['dc1'] = lambda base, flt, scope, attrs: [
        FakeEntry(dn, displayName='Alice Example', lastLogon='133540000000000000', whenCreated='garbage')]

    client = LdapDirectoryClient('dc0', base_dn='DC=corp,DC=local')
    with caplog.at_level(logging.WARNING):
        observation = client.query_account_on_server('alice', 'dc1', include_extended=True, distinguished_name=dn)

    assert observation.raw_last_logon == '133540000000000000'
    assert observation.when_created is None
    assert any('whenCreated' in record.getMessage() for record in caplog.records)
