import argparse
import datetime
import getpass
import logging
import os

from kskspider.account import format_account_identifier, parse_account_identifier
from kskspider.session import Credentials, with_session

def parse_args(argv=None):
    today = datetime.date.today()
    parser = argparse.ArgumentParser(prog='ksk-spider', description='Print balances and transactions from Sparkasse online banking.')
    parser.add_argument('host', help='domain of the bank, e.g. kskbb.de')
    parser.add_argument('username')
    parser.add_argument('--from', dest='date_from', type=datetime.date.fromisoformat, default=today - datetime.timedelta(days=30))
    parser.add_argument('--to', dest='date_to', type=datetime.date.fromisoformat, default=today)
    parser.add_argument('--account', type=parse_account_identifier, help='only this IBAN or account identifier')
    parser.add_argument('--locale', help='portal locale, derived from the portal URL by default')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    pin = os.environ.get('KSK_PIN') or getpass.getpass('PIN: ')
    credentials = Credentials(args.host, args.username, pin)

    def report(session):
        for status in session.get_financial_status():
            if args.account is not None and status.account_id != args.account:
                continue
            print('balance', format_account_identifier(status.account_id), status.balance)
            for txn in session.get_transactions_in_time_range(status.account_id, args.date_from, args.date_to):
                print(txn.posted_at, txn.amount, txn.partner_name or '', txn.purpose or '')

    with_session(credentials, report, locale=args.locale)

if __name__ == '__main__':
    main()
