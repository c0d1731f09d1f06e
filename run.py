#!/usr/bin/env python3
"""Backup utility runner"""
import argparse
import logging
import sys

from backupsync import create_orchestrator
from backupsync.notifier import NotificationError
from backupsync.settings import SettingsError
from backupsync.utils.crypto import CryptoManager, encode_salt

logger = logging.getLogger('backupsync')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Upload, verify and clean up backups.')
    parser.add_argument('--settings', help='Settings file (default: BACKUPSYNC_SETTINGS)')
    parser.add_argument('--env', choices=['development', 'production'],
                        help='Configuration to use (default: BACKUPSYNC_ENV)')
    parser.add_argument('--self-test', action='store_true',
                        help='Check the remote store connection and list its contents')
    parser.add_argument('--encrypt', metavar='VALUE',
                        help='Print VALUE encrypted with the given --password and exit')
    parser.add_argument('--password', help='Master password used by --encrypt')
    return parser.parse_args(argv)


def encrypt_value(value, password):
    """Print an encrypted settings value together with a new salt."""
    crypto = CryptoManager()
    salt = crypto.initialize(password)
    print(f"value: {crypto.encrypt(value)}")
    print(f"salt:  {encode_salt(salt)}")


def main(argv=None):
    args = parse_args(argv)

    if args.encrypt is not None:
        if not args.password:
            print('--encrypt requires --password', file=sys.stderr)
            return 2
        encrypt_value(args.encrypt, args.password)
        return 0

    try:
        orchestrator = create_orchestrator(args.env, args.settings)
    except (SettingsError, ValueError) as e:
        print(f"Failed to load settings: {e}", file=sys.stderr)
        return 1

    try:
        if args.self_test:
            report = orchestrator.self_test()
        else:
            report = orchestrator.run()
    except NotificationError as e:
        logger.error(str(e))
        return 1

    return 1 if report.has_errors else 0


if __name__ == '__main__':
    sys.exit(main())
