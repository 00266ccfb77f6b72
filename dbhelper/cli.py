# dbhelper/cli.py
"""Command-line utilities for running GO-separated SQL scripts and managing dbhelper configuration."""

import argparse
import importlib.metadata
import importlib.util
import logging
import sys

from . import config
from .batch import read_batch_file, split_batch_file
from .connection_string import build_connection_string, obfuscate_credentials
from .database import get_all_drivers, open_connection
from .logging_utils import setup_logging
from .queries import execute_non_query_batch, write_to_csv

logger = logging.getLogger(__name__)


def _name_cleanup(name):
    """Cleanup module names for search and display"""
    return name.lower().replace('-', '_')


def _get_optional_deps(extra_name='recommended'):
    """Optional dependencies declared for an extra, e.g. ['keyring>=23.0']"""
    try:
        reqs = importlib.metadata.requires('dbhelper') or []
    except importlib.metadata.PackageNotFoundError:
        return []
    deps = []
    # requirements look like: 'keyring>=23.0; extra == "recommended"'
    for req in reqs:
        req = req.replace("'", '"')
        if f'extra == "{extra_name}"' in req:
            deps.append(req.split(';')[0].strip())
    return deps


def _is_installed(pkg: str) -> bool:
    return importlib.util.find_spec(_name_cleanup(pkg)) is not None


def checkup():
    """Report optional dependencies, drivers and config health."""
    installed = {_name_cleanup(d.metadata['Name']): d.version for d in importlib.metadata.distributions()
                 if d.metadata['Name']}

    print(f"{'Package':<20} {'Status':<8} {'Version'}")
    print("-" * 40)
    for dep in _get_optional_deps('recommended') + _get_optional_deps('sqlserver'):
        name = dep.split('>=')[0].split('==')[0].split('<')[0].strip()
        status = "✓" if _is_installed(name) else "✗"
        print(f"{name:<20} {status:<8} {installed.get(_name_cleanup(name), '-')}")

    print("\nDB Drivers           Priority* Status   Version")
    print("-" * 56)
    by_type = {}
    for name, info in get_all_drivers().items():
        by_type.setdefault(info['database_type'], []).append((info['priority'], name, info))

    odbc_drivers = []
    if _is_installed('pyodbc'):
        import pyodbc
        odbc_drivers = pyodbc.drivers()

    for db_type in sorted(by_type):
        print(db_type)
        for priority, name, info in sorted(by_type[db_type], key=lambda x: x[0]):
            module_name = info.get('module', name)
            status = "✓" if _is_installed(module_name) else "✗"
            version = installed.get(_name_cleanup(module_name), '--')
            note = ''
            odbc_driver_name = info.get('odbc_driver_name')
            if odbc_driver_name:
                odbc_status = "✓" if odbc_driver_name in odbc_drivers else "✗"
                note = f'({odbc_status} {odbc_driver_name})'
            print(f"{'  ' + name:<20} {priority:<9} {status:<8} {version} {note}")

    print("\n* Lower priority = preferred")

    print("\nConfig Health")
    print("-" * 40)
    for status, msg in config.diagnose_config():
        print(f"{status} {msg}")


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument('--connection', '-c', help='Connection name from the config file')
    target.add_argument('--connection-string', '-s', help='Connection string, e.g. "Data Source=db01;..."')
    parser.add_argument('--db-type', choices=['sqlserver', 'sqlite'],
                        help='Database type of --connection-string (default: settings default_db_type)')
    parser.add_argument('--config', help='Config file path')
    parser.add_argument('--timeout', type=float, help='Timeout in seconds for each statement')


def _open_target(args):
    if args.config:
        config.set_config_file(args.config)
    if args.connection:
        return config.connect(args.connection)
    return open_connection(args.connection_string, db_type=args.db_type)


def split(args) -> int:
    statements = split_batch_file(args.file, encoding=args.encoding)
    print(f"{len(statements)} statement(s)")
    for index, statement in enumerate(statements, 1):
        print(f"-- [{index}]")
        print(statement.rstrip('\r\n'))
    return 0


def run_batch(args) -> int:
    if args.log:
        setup_logging(args.log_name)
    batch_sql = read_batch_file(args.file, encoding=args.encoding)

    with _open_target(args) as db:
        if args.transaction:
            with db.transaction() as tx:
                results = execute_non_query_batch(db, batch_sql, timeout=args.timeout, transaction=tx)
        else:
            results = execute_non_query_batch(db, batch_sql, timeout=args.timeout)

    for index, rowcount in enumerate(results, 1):
        print(f"[{index}] {rowcount} row(s) affected")
    return 0


def export_csv(args) -> int:
    with _open_target(args) as db:
        rows = write_to_csv(db, args.sql, args.output, timeout=args.timeout)
    print(f"Wrote {rows} row(s) to {args.output}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='dbhelper', description=__doc__)
    subparsers = parser.add_subparsers(dest='command', required=True)

    # split
    split_parser = subparsers.add_parser('split', help='Split a SQL script on GO lines and show the statements')
    split_parser.add_argument('file', help='SQL script')
    split_parser.add_argument('--encoding', help='Script encoding (default: utf-8-sig)')

    # run-batch
    batch_parser = subparsers.add_parser('run-batch', help='Execute a SQL script with GO separators')
    batch_parser.add_argument('file', help='SQL script')
    batch_parser.add_argument('--encoding', help='Script encoding (default: utf-8-sig)')
    batch_parser.add_argument('--transaction', action='store_true',
                              help='Run the whole script in one transaction')
    batch_parser.add_argument('--log', action='store_true', help='Write a timestamped log file')
    batch_parser.add_argument('--log-name', default='dbhelper_batch', help='Base name of the log file')
    _add_target_arguments(batch_parser)

    # export-csv
    export_parser = subparsers.add_parser('export-csv', help='Write the result of a query to a CSV file')
    export_parser.add_argument('sql', help='Query to run')
    export_parser.add_argument('output', help='CSV file to write')
    _add_target_arguments(export_parser)

    # build-connection-string
    build_parser = subparsers.add_parser('build-connection-string', help='Build a SQL Server connection string')
    build_parser.add_argument('--server', required=True, help='Server host name or address')
    build_parser.add_argument('--port', type=int, help='TCP port')
    build_parser.add_argument('--instance', help='Named instance')
    build_parser.add_argument('--database', help='Initial catalog (default: master)')
    build_parser.add_argument('--user', help='SQL login; integrated security when omitted')
    build_parser.add_argument('--password', help='Password for the SQL login')
    build_parser.add_argument('--connect-timeout', type=int, help='Seconds to wait while connecting')

    # obfuscate
    obfuscate_parser = subparsers.add_parser('obfuscate', help='Mask credentials in a connection string')
    obfuscate_parser.add_argument('connection_string', help='Connection string')
    obfuscate_parser.add_argument('--keep-user', action='store_true', help='Leave the user name visible')

    # checkup
    subparsers.add_parser('checkup', help='Check for dependencies and configuration issues')

    # generate-key
    subparsers.add_parser('generate-key', help='Generate encryption key')

    # store-key
    key_parser = subparsers.add_parser('store-key',
                                       help='Store encryption key in system keyring (generate if not provided)')
    key_parser.add_argument('key', nargs='?', default=None,
                            help='Encryption key to store. If omitted, a new key is generated and stored.')
    key_parser.add_argument('--force', action='store_true',
                            help='Overwrite existing encryption key in system keyring')

    # encrypt-config
    encrypt_parser = subparsers.add_parser('encrypt-config', help='Encrypt passwords in config file')
    encrypt_parser.add_argument('config_file', nargs='?', help='Config file path (default: the active config)')

    # encrypt-password
    pwd_parser = subparsers.add_parser('encrypt-password', help='Encrypt a password')
    pwd_parser.add_argument('password', nargs='?', help='Password to encrypt (prompted when omitted)')

    args = parser.parse_args(argv)

    try:
        if args.command == 'split':
            return split(args)
        elif args.command == 'run-batch':
            return run_batch(args)
        elif args.command == 'export-csv':
            return export_csv(args)
        elif args.command == 'build-connection-string':
            print(build_connection_string(args.server, port=args.port, instance_name=args.instance,
                                          database_name=args.database, user_name=args.user,
                                          password=args.password, connection_timeout=args.connect_timeout))
        elif args.command == 'obfuscate':
            print(obfuscate_credentials(args.connection_string, obfuscate_user_name=not args.keep_user))
        elif args.command == 'checkup':
            checkup()
        elif args.command == 'generate-key':
            print(config.generate_encryption_key())
        elif args.command == 'store-key':
            config.store_key(args.key, force=args.force)
        elif args.command == 'encrypt-config':
            config.encrypt_config_file(args.config_file or str(config._get_manager().config_file))
        elif args.command == 'encrypt-password':
            config.encrypt_password(args.password)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
