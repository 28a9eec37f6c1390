"""
PowerShell remoting backend.

Runs the ActiveDirectory module on a management host over WinRM
(pypsrp) and lets `Get-ADUser -Server <dc>` reach each domain controller.
Useful where LDAP binds from the API host are blocked but WinRM is open.
"""

import json
import logging
from typing import List, Optional

from pypsrp.client import Client
from pypsrp.exceptions import AuthenticationError, WinRMError, WinRMTransportError
from requests.exceptions import RequestException

from ..errors import DirectoryConnectionError, EnumerationFailed, ServerQueryFailed, ServerUnreachable
from ..schemas import AccountLookup, ServerObservation

from .base import DirectoryClient, looks_like_dn, split_identifier, when_created_or_none

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (AuthenticationError, WinRMError, WinRMTransportError, RequestException)

LOOKUP_SCRIPT = """
try {{
    Import-Module ActiveDirectory -ErrorAction Stop
    {selector_setup}
    $u = Get-ADUser {selector} -ErrorAction Stop | Select-Object -First 1
    if ($u) {{ Write-Output "FOUND:$($u.DistinguishedName)" }} else {{ Write-Output "NOT_FOUND" }}
}} catch [Microsoft.ActiveDirectory.Management.ADIdentityNotFoundException] {{
    Write-Output "NOT_FOUND"
}} catch {{
    Write-Output "ERROR: $($_.Exception.Message)"
}}
"""

LIST_DCS_SCRIPT = """
try {
    Import-Module ActiveDirectory -ErrorAction Stop
    Get-ADDomainController -Filter * -ErrorAction Stop | ForEach-Object { Write-Output "DC:$($_.HostName)" }
} catch {
    Write-Output "ERROR: $($_.Exception.Message)"
}
"""

QUERY_SCRIPT = """
try {{
    Import-Module ActiveDirectory -ErrorAction Stop
    {selector_setup}
    $u = Get-ADUser {selector} -Server '{server}' -Properties {properties} -ErrorAction Stop | Select-Object -First 1
    if (-not $u) {{
        Write-Output "NOT_FOUND"
    }} else {{
        [pscustomobject]@{{
            Name = $u.Name
            DisplayName = $u.DisplayName
            SamAccountName = $u.SamAccountName
            LastLogon = [string]$u.lastLogon
            Description = $u.Description
            WhenCreated = $(if ($u.whenCreated) {{ $u.whenCreated.ToUniversalTime().ToString('yyyy-MM-ddTHH:mm:ssZ') }} else {{ $null }})
        }} | ConvertTo-Json -Compress
    }}
}} catch [Microsoft.ActiveDirectory.Management.ADServerDownException] {{
    Write-Output "UNREACHABLE: $($_.Exception.Message)"
}} catch [Microsoft.ActiveDirectory.Management.ADIdentityNotFoundException] {{
    Write-Output "NOT_FOUND"
}} catch {{
    Write-Output "ERROR: $($_.Exception.Message)"
}}
"""


def ps_quote(value: str) -> str:
    """Single-quoted PowerShell literal."""
    return "'" + str(value).replace("'", "''") + "'"


def build_selector(identifier: str):
    """Returns (setup line, Get-ADUser selector arguments) for an identifier.

    -Identity takes a DN or sAMAccountName; UPNs need a filter.
    """
    if looks_like_dn(identifier):
        return '', f'-Identity {ps_quote(identifier)}'
    _, name = split_identifier(identifier)
    if '@' in name:
        return f'$upn = {ps_quote(name)}', '-Filter { UserPrincipalName -eq $upn }'
    return '', f'-Identity {ps_quote(name)}'


def _lines(output: str) -> List[str]:
    return [line.strip() for line in (output or '').splitlines() if line.strip()]


class PowerShellDirectoryClient(DirectoryClient):
    backend = 'powershell'

    def __init__(self, host, username=None, password=None, auth='ntlm', ssl=False, timeout=15):
        super().__init__(timeout=timeout)
        self.host = host
        self.username = username
        self.password = password
        self.auth = auth
        self.ssl = ssl

    def _client(self) -> Client:
        return Client(
            server=self.host,
            username=self.username,
            password=self.password,
            ssl=self.ssl,
            cert_validation=False,
            auth=self.auth,
            connection_timeout=self.timeout,
            operation_timeout=self.timeout * 2,
        )

    def _run(self, script: str) -> str:
        output, streams, had_errors = self._client().execute_ps(script)
        if had_errors:
            errors = '; '.join(str(e) for e in getattr(streams, 'error', []) or [])
            raise WinRMError(errors or 'PowerShell reported errors')
        return output

    def open(self):
        if not self.host:
            raise DirectoryConnectionError('WINRM_SERVER is not configured')
        try:
            output = self._run("Write-Output 'CONNECTION_OK'")
        except TRANSPORT_ERRORS as e:
            raise DirectoryConnectionError(f'WinRM connection to {self.host} failed: {e}') from e
        if 'CONNECTION_OK' not in output:
            raise DirectoryConnectionError(f'Unexpected WinRM response from {self.host}: {output!r}')
        logger.info(f"✅ WinRM connection established: {self.host}")

    def close(self):
        # Each call uses its own runspace; nothing is held open
        pass

    def lookup_account(self, identifier: str) -> AccountLookup:
        setup, selector = build_selector(identifier)
        try:
            output = self._run(LOOKUP_SCRIPT.format(selector_setup=setup, selector=selector))
        except TRANSPORT_ERRORS as e:
            raise DirectoryConnectionError(f'Lookup of {identifier} failed: {e}') from e

        for line in _lines(output):
            if line.startswith('FOUND:'):
                return AccountLookup(identifier=identifier, exists=True, distinguished_name=line[len('FOUND:'):])
            if line == 'NOT_FOUND':
                return AccountLookup(identifier=identifier, exists=False)
            if line.startswith('ERROR:'):
                raise DirectoryConnectionError(f'Lookup of {identifier} failed: {line[6:].strip()}')
        raise DirectoryConnectionError(f'Unexpected lookup output for {identifier}: {output!r}')

    def list_auth_servers(self) -> List[str]:
        try:
            output = self._run(LIST_DCS_SCRIPT)
        except TRANSPORT_ERRORS as e:
            raise EnumerationFailed(f'Could not list domain controllers: {e}') from e

        servers = []
        for line in _lines(output):
            if line.startswith('ERROR:'):
                raise EnumerationFailed(f'Could not list domain controllers: {line[6:].strip()}')
            if line.startswith('DC:') and line[3:]:
                servers.append(line[3:])
        return servers

    def query_account_on_server(self, identifier: str, server: str, include_extended: bool = False,
                                distinguished_name: Optional[str] = None) -> ServerObservation:
        setup, selector = build_selector(distinguished_name or identifier)
        properties = 'lastLogon,displayName'
        if include_extended:
            properties += ',description,whenCreated'
        script = QUERY_SCRIPT.format(selector_setup=setup, selector=selector,
                                     server=str(server).replace("'", "''"), properties=properties)
        try:
            output = self._run(script)
        except TRANSPORT_ERRORS as e:
            raise ServerQueryFailed(server, identifier, f'WinRM: {e}') from e

        lines = _lines(output)
        if not lines:
            raise ServerQueryFailed(server, identifier, 'empty response')
        first = lines[0]
        if first.startswith('UNREACHABLE:'):
            raise ServerUnreachable(server, identifier, first[len('UNREACHABLE:'):].strip())
        if first.startswith('ERROR:'):
            raise ServerQueryFailed(server, identifier, first[6:].strip())
        if first == 'NOT_FOUND':
            raise ServerQueryFailed(server, identifier, 'account not present on this DC')

        try:
            data = json.loads(first)
        except ValueError as e:
            raise ServerQueryFailed(server, identifier, f'unparseable output: {first[:200]}') from e

        return ServerObservation(
            account=identifier,
            server=server,
            display_name=data.get('DisplayName') or data.get('Name') or data.get('SamAccountName'),
            raw_last_logon=data.get('LastLogon'),
            description=data.get('Description') if include_extended else None,
            when_created=when_created_or_none(data.get('WhenCreated'), server, identifier) if include_extended else None,
        )
