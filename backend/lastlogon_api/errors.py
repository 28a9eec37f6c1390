from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import traceback
import logging

logger = logging.getLogger(__name__)


class LastLogonError(Exception):
    """Base class for every error raised while resolving last logons."""


class InvalidAccountIdentifier(LastLogonError, ValueError):
    pass


class AccountNotFound(LastLogonError, LookupError):
    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"Account '{identifier}' not found in the directory")


class DirectoryConnectionError(LastLogonError):
    """Binding to the directory (or the remoting host) failed."""


class EnumerationFailed(LastLogonError):
    """The domain controller list could not be read. Nothing can be resolved without it."""


class ServerQueryFailed(LastLogonError):
    def __init__(self, server, account, message):
        self.server = server
        self.account = account
        super().__init__(f"{server}: {message}")


class ServerUnreachable(ServerQueryFailed):
    pass


def _error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={
        "error": error,
        "message": str(exc),
    })


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(AccountNotFound)
    async def account_not_found_handler(request: Request, exc: AccountNotFound):
        return _error_response(404, "account_not_found", exc)

    @app.exception_handler(InvalidAccountIdentifier)
    async def invalid_identifier_handler(request: Request, exc: InvalidAccountIdentifier):
        return _error_response(422, "invalid_account_identifier", exc)

    @app.exception_handler(DirectoryConnectionError)
    async def directory_connection_handler(request: Request, exc: DirectoryConnectionError):
        logger.error(f"Directory connection failed: {exc}")
        return _error_response(502, "directory_unavailable", exc)

    @app.exception_handler(EnumerationFailed)
    async def enumeration_failed_handler(request: Request, exc: EnumerationFailed):
        logger.error(f"Domain controller enumeration failed: {exc}")
        return _error_response(503, "enumeration_failed", exc)

    @app.exception_handler(Exception)
    async def all_exception_handler(request: Request, exc: Exception):
        tb = traceback.format_exc()
        logger.error(f"Unhandled exception: {exc}\n{tb}")
        return JSONResponse(status_code=500, content={
            "error": "internal_server_error",
            "message": str(exc),
            "trace": tb if app.debug else None
        })
