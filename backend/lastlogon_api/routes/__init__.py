from .last_logon import last_logon_router

__all__ = ["last_logon_router"]
