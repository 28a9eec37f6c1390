from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..config import get_settings
from ..connections import get_directory_client, test_all_connections
from ..errors import AccountNotFound
from ..schemas import AccountLastLogonResult, LastLogonReport, LastLogonRequest
from ..services.last_logon import LastLogonService

last_logon_router = APIRouter()


def _service(client, include_extended=None) -> LastLogonService:
    return LastLogonService.from_settings(client, get_settings(), include_extended=include_extended)


@last_logon_router.get('/last-logon/{account:path}', response_model=AccountLastLogonResult)
def get_last_logon(account: str, extended: Optional[bool] = Query(None), client=Depends(get_directory_client)):
    report = _service(client, extended).resolve(account)
    if not report.results:
        raise AccountNotFound(account)
    return report.results[0]


@last_logon_router.post('/last-logon', response_model=LastLogonReport)
def post_last_logon(request: LastLogonRequest, client=Depends(get_directory_client)):
    return _service(client, request.include_extended).resolve(request.accounts)


@last_logon_router.get('/domain-controllers')
def list_domain_controllers(client=Depends(get_directory_client)):
    servers = client.list_auth_servers()
    return {'domain_controllers': servers, 'count': len(servers)}


@last_logon_router.get('/health')
def health():
    return test_all_connections()
