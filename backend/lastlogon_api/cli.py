#!/usr/bin/env python3
"""
Command line entry point: get-lastlogon alice bob, or pipe identifiers in
one per line with `-`.
"""

import argparse
import csv
import json
import logging
import sys

from .config import get_settings
from .connections import BACKENDS, create_directory_client
from .errors import LastLogonError
from .logging_config import configure_logging
from .schemas import LastLogonReport
from .services import LastLogonService, iter_stream_lines

logger = logging.getLogger(__name__)

COLUMNS = ['accountIdentifier', 'displayName', 'lastLogon', 'sourceServerName', 'description', 'whenCreated']
UNKNOWN = 'unknown'

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_NOT_FOUND = 2


def build_parser():
    parser = argparse.ArgumentParser(description='Real last logon of AD accounts, asked of every domain controller')
    parser.add_argument('accounts', nargs='*',
                        help="Account identifiers (sAMAccountName, DOMAIN\\user, UPN or DN). Use '-' to read stdin")
    parser.add_argument('--stdin', action='store_true', help='Read identifiers from stdin, one per line')
    parser.add_argument('-e', '--extended', action='store_true', default=None,
                        help='Also fetch description and whenCreated')
    parser.add_argument('-b', '--backend', choices=BACKENDS, help='Directory backend (default: DIRECTORY_BACKEND)')
    parser.add_argument('-w', '--server-workers', type=int, help='Parallel DC queries per account')
    parser.add_argument('-a', '--account-workers', type=int, help='Accounts resolved in parallel')
    parser.add_argument('-t', '--timeout', type=int, help='Per DC query timeout in seconds')
    parser.add_argument('-f', '--format', choices=['table', 'json', 'csv'], default='table')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def _row(result):
    data = result.model_dump(mode='json', by_alias=True)
    if data.get('lastLogon') is None:
        data['lastLogon'] = UNKNOWN
    return {column: '' if data.get(column) is None else data[column] for column in COLUMNS}


def _identifiers(args, stdin):
    accounts = [a for a in args.accounts if a != '-']
    if args.stdin or '-' in args.accounts:
        def streamed():
            yield from accounts
            yield from iter_stream_lines(stdin)
        return streamed()
    return accounts


class TableWriter:
    def __init__(self, out):
        self.out = out
        self.out.write(f"{'Account':<24} {'Name':<30} {'Last logon':<27} {'DC'}\n")

    def write(self, result):
        row = _row(result)
        self.out.write(f"{row['accountIdentifier']:<24} {row['displayName']:<30} "
                       f"{row['lastLogon']:<27} {row['sourceServerName']}\n")
        self.out.flush()


class CsvWriter:
    def __init__(self, out):
        self.writer = csv.DictWriter(out, fieldnames=COLUMNS)
        self.writer.writeheader()
        self.out = out

    def write(self, result):
        self.writer.writerow(_row(result))
        self.out.flush()


def run(args, stdin=None, stdout=None) -> int:
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    settings = get_settings()
    if args.timeout:
        # the transports read DC_QUERY_TIMEOUT, not just the collector
        settings = settings.model_copy(update={'DC_QUERY_TIMEOUT': args.timeout})

    identifiers = _identifiers(args, stdin)
    if not args.accounts and not args.stdin:
        logger.error('No account identifiers given')
        return EXIT_FATAL

    client = create_directory_client(settings, backend=args.backend)
    with client:
        service = LastLogonService.from_settings(
            client, settings,
            include_extended=args.extended,
            max_server_workers=args.server_workers,
            max_account_workers=args.account_workers,
        )
        if args.format == 'json':
            report = service.resolve(identifiers)
            payload = report.model_dump(mode='json', by_alias=True)
            for item in payload['results']:
                if item['lastLogon'] is None:
                    item['lastLogon'] = UNKNOWN
            json.dump(payload, stdout, indent=2)
            stdout.write('\n')
        else:
            report = LastLogonReport()
            writer = CsvWriter(stdout) if args.format == 'csv' else TableWriter(stdout)
            for result in service.iter_results(identifiers, report):
                writer.write(result)

    return EXIT_NOT_FOUND if report.not_found else EXIT_OK


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE, verbose=args.verbose)

    try:
        code = run(args)
    except KeyboardInterrupt:
        logger.info('[STOP] Interrupted by user')
        code = EXIT_FATAL
    except LastLogonError as e:
        logger.error(f'[CRITICAL] {e}')
        code = EXIT_FATAL
    sys.exit(code)


if __name__ == '__main__':
    main()
