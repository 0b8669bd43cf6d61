from __future__ import annotations

import argparse
import getpass
import os
import sys

from casedesk.db import SessionLocal, init_db
from casedesk.errors import Unauthenticated
from casedesk.log_config import configure_logging
from casedesk.services.sync_engine import SyncEngine
from casedesk.services.user_service import open_session


def main() -> None:
    parser = argparse.ArgumentParser(description='Push local changes to the case server and/or pull cases down.')
    parser.add_argument('--username', required=True, help='Local username to act as.')
    parser.add_argument('--token', default=os.getenv('CASEDESK_SERVER_TOKEN'), help='Server bearer token (or CASEDESK_SERVER_TOKEN).')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--download', action='store_true', help='Only pull cases and attendance from the server.')
    mode.add_argument('--full', action='store_true', help='Push local changes, then pull.')
    parser.add_argument('--retry-failed', action='store_true', help='Clear backoff on dead-lettered records first.')
    args = parser.parse_args()

    configure_logging()
    init_db()
    password = os.getenv('CASEDESK_PASSWORD') or getpass.getpass('Password: ')

    try:
        with SessionLocal.begin() as db:
            session = open_session(db, username=args.username, password=password, token=args.token)
    except Unauthenticated as exc:
        print(f'Sign-in failed: {exc}', file=sys.stderr)
        raise SystemExit(1) from exc

    engine = SyncEngine()
    if args.retry_failed:
        print(f'Reset {engine.retry_failed()} failed records')

    if args.download:
        pulled = engine.download_from_server(session)
        print(f'Case download complete: {pulled.message}')
        ok = pulled.success
    elif args.full:
        pushed, pulled = engine.run_cycle(session)
        print(f'Case sync complete: {pushed.message}')
        if pulled is not None:
            print(f'Case download complete: {pulled.message}')
        ok = pushed.success and pulled is not None and pulled.success
    else:
        pushed = engine.sync_now(session)
        print(f'Case sync complete: {pushed.message}')
        ok = pushed.success

    status = engine.get_status()
    print(f'Pending records: {status.pending_records}, dead-lettered: {status.dead_lettered}')
    if not ok:
        raise SystemExit(1)


if __name__ == '__main__':
    main()
