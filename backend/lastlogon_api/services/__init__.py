from .identifiers import iter_identifiers, iter_stream_lines
from .last_logon import LastLogonService, reduce_observations, resolve_last_logon

__all__ = ["iter_identifiers", "iter_stream_lines", "LastLogonService", "reduce_observations", "resolve_last_logon"]
