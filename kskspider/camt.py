'''
Decoder for the CSV-CAMT transaction export of the online banking portal.

The export is a ``;`` separated file with one header row, e.g.::

    "Auftragskonto";"Buchungstag";"Valutadatum";"Buchungstext";...
    "DE89370400440532013000";"02.01.19";"02.01.19";"LASTSCHRIFT";...
'''

import csv
import datetime
from collections import namedtuple

from kskspider.account import parse_account_identifier, parse_money_amount
from kskspider.errors import DecodeError

DATE_FORMAT = '%d.%m.%y'

AMOUNT_COLUMN = 'Betrag'
CURRENCY_COLUMN = 'Waehrung'

Transaction = namedtuple('Transaction', [
    'posted_at',
    'valued_at',
    'owner',
    'partner',
    'partner_name',
    'amount',
    'purpose',
    'creditor',
    'mandate_reference',
    'booking_text',
    'end_to_end_reference',
])

def parse_date(text):
    return datetime.datetime.strptime(text.strip(), DATE_FORMAT).date()

def _required(convert):
    def wrapper(text):
        if not text.strip():
            raise ValueError('value is empty')
        return convert(text)
    return wrapper

def _optional(convert):
    def wrapper(text):
        if not text.strip():
            return None
        return convert(text)
    return wrapper

def _text(text):
    return text.strip()

# header -> (Transaction field, converter)
CSV_CAMT_COLUMNS = {
    'Auftragskonto': ('owner', _required(parse_account_identifier)),
    'Buchungstag': ('posted_at', _required(parse_date)),
    'Valutadatum': ('valued_at', _required(parse_date)),
    'Buchungstext': ('booking_text', _optional(_text)),
    'Verwendungszweck': ('purpose', _optional(_text)),
    'Glaeubiger ID': ('creditor', _optional(_text)),
    'Mandatsreferenz': ('mandate_reference', _optional(_text)),
    'Kundenreferenz (End-to-End)': ('end_to_end_reference', _optional(_text)),
    'Beguenstigter/Zahlungspflichtiger': ('partner_name', _optional(_text)),
    'Kontonummer/IBAN': ('partner', _optional(parse_account_identifier)),
}

def _cell(index, row, column):
    value = row.get(column)
    if value is None:
        raise DecodeError(index, column, 'row has too few cells')
    return value

def decode_row(index, row):
    fields = {}
    for column, (field, convert) in CSV_CAMT_COLUMNS.items():
        value = _cell(index, row, column)
        try:
            fields[field] = convert(value)
        except ValueError as e:
            raise DecodeError(index, column, str(e)) from e

    currency = _cell(index, row, CURRENCY_COLUMN)
    try:
        fields['amount'] = parse_money_amount(_cell(index, row, AMOUNT_COLUMN), currency)
    except ValueError as e:
        raise DecodeError(index, AMOUNT_COLUMN, str(e)) from e

    return Transaction(**fields)

def decode_transactions(lines):
    '''
    Decodes an export given as an iterable of text lines (e.g. a text file)
    into a list of ``Transaction``. Any malformed row fails the whole decode.
    '''
    reader = csv.DictReader(lines, delimiter=';', quotechar='"')
    transactions = []
    # row being read, 1-based; the header is row 0
    index = 0
    try:
        header = reader.fieldnames or []
        for column in [*CSV_CAMT_COLUMNS, AMOUNT_COLUMN, CURRENCY_COLUMN]:
            if column not in header:
                raise DecodeError(0, column, 'column missing from header')
        index = 1
        for row in reader:
            transactions.append(decode_row(index, row))
            index += 1
    except (csv.Error, UnicodeDecodeError) as e:
        raise DecodeError(index, None, str(e)) from e
    return transactions
