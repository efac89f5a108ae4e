import decimal
import re
from collections import namedtuple

from kskspider.errors import InvalidIdentifierError

# country code -> (branch identifier length, account number length)
COUNTRY_CODES = {
    'DE': (8, 10),
}

# ISO 4217 minor unit exponents that differ from 2
MINOR_UNIT_EXPONENTS = {'BHD': 3, 'JPY': 0, 'KWD': 3, 'OMR': 3, 'TND': 3}

CURRENCY_RE = re.compile('[A-Z]{3}')
NUMERIC_RE = re.compile('[0-9]+')

def register_country_code(code, branch_id_length, account_number_length):
    if not re.fullmatch('[A-Z]{2}', code):
        raise ValueError(f'{code!r} is not a two letter country code')
    COUNTRY_CODES[code] = (branch_id_length, account_number_length)

def country_code_digits(country_code):
    # ISO 7064: A=10 ... Z=35
    return ''.join(str(ord(c) - ord('A') + 10) for c in country_code)

def compute_checksum(country_code, branch_id, account_number):
    number = int(branch_id + account_number + country_code_digits(country_code) + '00')
    return '%02d' % (98 - number % 97)

def _iban_field_error(country_code, branch_id, account_number):
    if country_code not in COUNTRY_CODES:
        return f'Did not recognize country code {country_code!r}'
    branch_id_length, account_number_length = COUNTRY_CODES[country_code]
    if not NUMERIC_RE.fullmatch(branch_id):
        return 'The branch identifier must be numeric'
    if len(branch_id) != branch_id_length:
        return f'For cc={country_code}, the branch identifier must be {branch_id_length} digits in length'
    if not NUMERIC_RE.fullmatch(account_number):
        return 'The account number must be numeric'
    if len(account_number) != account_number_length:
        return f'For cc={country_code}, the account number must be {account_number_length} digits in length'
    return None

class IBAN(namedtuple('IBAN', ['country_code', 'branch_id', 'account_number'])):
    __slots__ = ()

    def __new__(cls, country_code, branch_id, account_number):
        error = _iban_field_error(country_code, branch_id, account_number)
        if error is not None:
            raise InvalidIdentifierError(error)
        return super().__new__(cls, country_code, branch_id, account_number)

    @property
    def checksum(self):
        return compute_checksum(self.country_code, self.branch_id, self.account_number)

    def format(self):
        return self.country_code + self.checksum + self.branch_id + self.account_number

    def __str__(self):
        return self.format()

class UnknownAccountIdentifier(namedtuple('UnknownAccountIdentifier', ['identifier'])):
    '''Any account identifier that is not a valid IBAN, kept verbatim.'''

    __slots__ = ()

    def __str__(self):
        return self.identifier

def _try_parse_iban(text):
    normalized = re.sub(r'\s', '', text).upper()
    country_code = normalized[:2]
    if country_code not in COUNTRY_CODES:
        return None
    branch_id_length, _ = COUNTRY_CODES[country_code]
    checksum = normalized[2:4]
    branch_id = normalized[4:4 + branch_id_length]
    account_number = normalized[4 + branch_id_length:]
    if _iban_field_error(country_code, branch_id, account_number) is not None:
        return None
    iban = IBAN(country_code, branch_id, account_number)
    if iban.checksum != checksum:
        return None
    return iban

def parse_account_identifier(text):
    iban = _try_parse_iban(text)
    if iban is None:
        return UnknownAccountIdentifier(text)
    return iban

def format_account_identifier(identifier):
    if isinstance(identifier, IBAN):
        return identifier.format()
    if isinstance(identifier, UnknownAccountIdentifier):
        return identifier.identifier
    raise TypeError(f'not an account identifier: {identifier!r}')

class MoneyAmount(namedtuple('MoneyAmount', ['minor_units', 'currency'])):
    __slots__ = ()

    def to_decimal(self):
        exponent = MINOR_UNIT_EXPONENTS.get(self.currency, 2)
        return decimal.Decimal(self.minor_units).scaleb(-exponent)

    def __str__(self):
        return f'{self.to_decimal()} {self.currency}'

BankAccountFinancialStatus = namedtuple('BankAccountFinancialStatus', ['account_id', 'balance'])

def _amount_re(thousands, decimal_point):
    t, d = re.escape(thousands), re.escape(decimal_point)
    return re.compile(rf'([-+]?)(\d{{1,3}}(?:{t}\d{{3}})+|\d+)(?:{d}(\d+))?')

# locale -> (thousands separator, decimal separator)
AMOUNT_SEPARATORS = {
    'de': ('.', ','),
    'en': (',', '.'),
}

def parse_amount(amount, locale='de'):
    '''
    Parses an amount formatted for ``locale``, e.g. ``-1.234,56`` (de) or
    ``-1,234.56`` (en). Separators in the wrong place are rejected.
    '''
    thousands, decimal_point = AMOUNT_SEPARATORS.get(locale, AMOUNT_SEPARATORS['de'])
    text = re.sub(r'\s', '', amount).replace('−', '-')
    m = _amount_re(thousands, decimal_point).fullmatch(text)
    if m is None:
        raise ValueError(f'{amount!r} is not an amount')
    sign, integral, fraction = m.groups()
    return decimal.Decimal(sign + integral.replace(thousands, '') + ('.' + fraction if fraction else ''))

def parse_money_amount(amount, currency, locale='de'):
    currency = currency.strip()
    if not CURRENCY_RE.fullmatch(currency):
        raise ValueError(f'{currency!r} is not a currency code')
    value = parse_amount(amount, locale)
    minor_units = value.scaleb(MINOR_UNIT_EXPONENTS.get(currency, 2))
    if minor_units != minor_units.to_integral_value():
        raise ValueError(f'{amount!r} has too many decimal places for {currency}')
    return MoneyAmount(int(minor_units), currency)

def parse_balance(text, locale='de'):
    '''Parses balance text as shown in the accounts table, e.g. ``-1.234,56 EUR``.'''
    m = re.fullmatch(r'\s*(.*?)\s*([A-Z]{3})\s*', text, re.S)
    if m is None:
        raise ValueError(f'{text!r} does not end in a currency code')
    return parse_money_amount(m.group(1), m.group(2), locale)
