import logging
from typing import List, Optional

from ..schemas import AccountLookup, ServerObservation
from ..timestamps import parse_when_created

logger = logging.getLogger(__name__)


class DirectoryClient:
    """Handle on one directory session.

    Acquired once per invocation (`with client:`) and released on every exit
    path. Per-DC queries may run on worker threads, so implementations keep
    no per-query state on the instance.
    """

    backend = 'base'

    def __init__(self, timeout: int = 15):
        self.timeout = timeout

    def open(self):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def lookup_account(self, identifier: str) -> AccountLookup:
        raise NotImplementedError

    def list_auth_servers(self) -> List[str]:
        raise NotImplementedError

    def query_account_on_server(self, identifier: str, server: str, include_extended: bool = False,
                                distinguished_name: Optional[str] = None) -> ServerObservation:
        raise NotImplementedError


def split_identifier(identifier: str):
    """Split 'DOMAIN\\user' into ('DOMAIN', 'user'); other forms come back unchanged."""
    if '\\' in identifier:
        domain, _, name = identifier.partition('\\')
        return domain, name
    return None, identifier


def looks_like_dn(identifier: str) -> bool:
    return '=' in identifier and ',' in identifier


def when_created_or_none(value, server: str, identifier: str):
    """whenCreated is optional: a malformed value must not cost the DC its lastLogon."""
    if value is None:
        return None
    try:
        return parse_when_created(value)
    except ValueError as e:
        logger.warning(f"{server}: ignoring whenCreated for {identifier}: {e}")
        return None
