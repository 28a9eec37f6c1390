"""
Last logon resolution across every domain controller.

lastLogon is not replicated: each DC only knows about logons it
authenticated itself. An account's real last logon is the maximum over all
DCs, ignoring the DCs that report the "never" value.
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from ..schemas import AccountLastLogonResult, LastLogonReport, ServerObservation, ServerWarning
from ..timestamps import filetime_to_datetime
from .identifiers import iter_identifiers

logger = logging.getLogger(__name__)


def _decode(observation: ServerObservation, log: logging.Logger):
    try:
        return filetime_to_datetime(observation.raw_last_logon)
    except ValueError as e:
        log.warning(f"{observation.server}: ignoring lastLogon for {observation.account}: {e}")
        return None


def reduce_observations(identifier: str, observations: List[ServerObservation],
                        log: Optional[logging.Logger] = None) -> AccountLastLogonResult:
    """Collapse per-DC observations into one result.

    The most recent real timestamp wins; on ties the first DC in enumeration
    order is kept. When no DC has a real timestamp, descriptive fields come
    from the first observation and last_logon stays None.
    """
    log = log or logger
    winner = None
    winner_time = None
    for observation in observations:
        when = _decode(observation, log)
        if when is None:
            continue
        if winner_time is None or when > winner_time:
            winner, winner_time = observation, when

    if winner is not None:
        return AccountLastLogonResult(
            display_name=winner.display_name,
            account=identifier,
            source_server=winner.server,
            last_logon=winner_time,
            description=winner.description,
            when_created=winner.when_created,
        )

    if observations:
        first = observations[0]
        return AccountLastLogonResult(
            display_name=first.display_name,
            account=identifier,
            last_logon=None,
            description=first.description,
            when_created=first.when_created,
        )

    return AccountLastLogonResult(account=identifier, last_logon=None)


class LastLogonService:
    def __init__(self, client, include_extended: bool = False, max_server_workers: int = 8,
                 max_account_workers: int = 1, query_timeout: Optional[float] = 15,
                 log: Optional[logging.Logger] = None):
        self.client = client
        self.include_extended = include_extended
        self.max_server_workers = max(1, int(max_server_workers))
        self.max_account_workers = max(1, int(max_account_workers))
        self.query_timeout = query_timeout
        self.log = log or logger

    @classmethod
    def from_settings(cls, client, settings, **overrides):
        options = {
            'include_extended': settings.INCLUDE_EXTENDED_ATTRIBUTES,
            'max_server_workers': settings.MAX_SERVER_WORKERS,
            'max_account_workers': settings.MAX_ACCOUNT_WORKERS,
            'query_timeout': settings.DC_QUERY_TIMEOUT,
        }
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(client, **options)

    def enumerate_servers(self) -> List[str]:
        """One DC enumeration per invocation. EnumerationFailed propagates."""
        servers = self.client.list_auth_servers()
        if servers:
            self.log.info(f"🔍 {len(servers)} domain controllers: {', '.join(servers)}")
        else:
            self.log.warning("No domain controllers found; every account will resolve to an unknown last logon")
        return servers

    def _batch_deadline(self, server_count: int, workers: int) -> Optional[float]:
        if not self.query_timeout:
            return None
        waves = math.ceil(server_count / workers)
        # connect and receive are bounded separately by the transport
        return self.query_timeout * 2 * waves

    def collect(self, identifier: str, servers: List[str],
                distinguished_name: Optional[str] = None) -> Tuple[List[ServerObservation], List[ServerWarning]]:
        """Query every DC for one account. A failing DC only loses its own observation."""
        if not servers:
            return [], []

        workers = min(len(servers), self.max_server_workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='dc-query')
        observations = []
        warnings = []
        try:
            futures = [
                executor.submit(self.client.query_account_on_server, identifier, server,
                                self.include_extended, distinguished_name)
                for server in servers
            ]
            _, pending = wait(futures, timeout=self._batch_deadline(len(servers), workers))

            # enumeration order, whatever the completion order was
            for server, future in zip(servers, futures):
                if future in pending:
                    future.cancel()
                    error = f"no answer within {self._batch_deadline(len(servers), workers):.0f}s"
                else:
                    try:
                        observation = future.result()
                    except Exception as e:
                        error = str(e) or e.__class__.__name__
                    else:
                        self.log.debug(f"{server}: {identifier} lastLogon={observation.raw_last_logon!r}")
                        observations.append(observation)
                        continue
                self.log.warning(f"⚠️ {server}: query for {identifier} failed: {error}")
                warnings.append(ServerWarning(account=identifier, server=server, error=error))
        finally:
            # do not join threads stuck on an unresponsive DC
            executor.shutdown(wait=False, cancel_futures=True)

        return observations, warnings

    def _resolve_account(self, identifier: str, servers: List[str], distinguished_name: Optional[str]):
        observations, warnings = self.collect(identifier, servers, distinguished_name)
        result = reduce_observations(identifier, observations, self.log)
        if result.last_logon:
            self.log.info(f"{identifier}: last logon {result.last_logon.isoformat()} on {result.source_server}")
        elif servers and not observations:
            self.log.warning(f"{identifier}: no domain controller answered, last logon unknown")
        else:
            self.log.info(f"{identifier}: no logon recorded on any domain controller")
        return result, warnings

    def _exists(self, identifier: str, report: LastLogonReport):
        lookup = self.client.lookup_account(identifier)
        if not lookup.exists:
            self.log.warning(f"Account '{identifier}' not found in the directory, skipping")
            report.not_found.append(identifier)
            return None
        return lookup

    def iter_results(self, identifiers: Union[str, Iterable[str]],
                     report: Optional[LastLogonReport] = None) -> Iterator[AccountLastLogonResult]:
        """Stream one result per existing account, in input order.

        Not-found accounts and DC warnings are recorded on `report` when one
        is given.
        """
        report = report if report is not None else LastLogonReport()
        servers = self.enumerate_servers()
        report.servers = list(servers)
        for identifier in iter_identifiers(identifiers):
            lookup = self._exists(identifier, report)
            if lookup is None:
                continue
            result, warnings = self._resolve_account(identifier, servers, lookup.distinguished_name)
            report.warnings.extend(warnings)
            report.results.append(result)
            yield result

    def resolve(self, identifiers: Union[str, Iterable[str]]) -> LastLogonReport:
        start = time.time()
        report = LastLogonReport()
        if self.max_account_workers > 1:
            self._resolve_concurrently(identifiers, report)
        else:
            for _ in self.iter_results(identifiers, report):
                pass
        self.log.info(f"Resolved {len(report.results)} accounts in {time.time() - start:.1f}s "
                      f"({len(report.not_found)} not found, {len(report.warnings)} DC warnings)")
        return report

    def _resolve_concurrently(self, identifiers, report: LastLogonReport):
        servers = self.enumerate_servers()
        report.servers = list(servers)

        # Existence checks share the bound session, so they stay on this thread.
        # Results are placed by input index, never by arrival.
        slots = []
        with ThreadPoolExecutor(max_workers=self.max_account_workers, thread_name_prefix='account') as executor:
            for identifier in iter_identifiers(identifiers):
                lookup = self._exists(identifier, report)
                if lookup is None:
                    continue
                slots.append(executor.submit(self._resolve_account, identifier, servers,
                                             lookup.distinguished_name))

            for future in slots:
                result, warnings = future.result()
                report.warnings.extend(warnings)
                report.results.append(result)


def resolve_last_logon(client, identifiers, **options) -> LastLogonReport:
    return LastLogonService(client, **options).resolve(identifiers)
