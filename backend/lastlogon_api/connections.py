"""Directory client factory and connection checks.

`create_directory_client()` builds the backend selected by DIRECTORY_BACKEND.
`get_directory_client()` is the FastAPI dependency: one open client per
request, closed on every exit path. `test_all_connections()` runs at startup
and from /api/health.
"""

import logging
from typing import Any, Dict, Iterator, Optional

from .config import Settings, get_settings
from .errors import DirectoryConnectionError, LastLogonError
from .managers import DirectoryClient, LdapDirectoryClient, PowerShellDirectoryClient

logger = logging.getLogger(__name__)

BACKENDS = ('ldap', 'powershell')


def create_directory_client(settings: Optional[Settings] = None, backend: Optional[str] = None) -> DirectoryClient:
    settings = settings or get_settings()
    backend = (backend or settings.DIRECTORY_BACKEND or 'ldap').lower()

    if backend == 'ldap':
        return LdapDirectoryClient(
            host=settings.ldap_host,
            username=settings.AD_USERNAME,
            password=settings.AD_PASSWORD,
            base_dn=settings.AD_BASE_DN,
            use_ssl=settings.AD_USE_SSL or (settings.AD_SERVER or '').startswith('ldaps://'),
            timeout=settings.DC_QUERY_TIMEOUT,
        )
    if backend == 'powershell':
        return PowerShellDirectoryClient(
            host=settings.winrm_host,
            username=settings.WINRM_USERNAME or settings.AD_USERNAME,
            password=settings.WINRM_PASSWORD or settings.AD_PASSWORD,
            auth=settings.WINRM_AUTH,
            ssl=settings.WINRM_SSL,
            timeout=settings.DC_QUERY_TIMEOUT,
        )
    raise DirectoryConnectionError(f"Unknown DIRECTORY_BACKEND '{backend}', expected one of {', '.join(BACKENDS)}")


def get_directory_client() -> Iterator[DirectoryClient]:
    client = create_directory_client()
    with client:
        yield client


def test_all_connections(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Open the configured directory client and count the DCs it can see.

    Never raises; failures end up in the returned status map.
    """
    settings = settings or get_settings()
    status: Dict[str, Any] = {'backend': settings.DIRECTORY_BACKEND}
    try:
        client = create_directory_client(settings)
        with client:
            status['connected'] = True
            status['domain_controllers'] = len(client.list_auth_servers())
    except LastLogonError as e:
        status.update({'connected': status.get('connected', False), 'error': str(e)})
    return status
