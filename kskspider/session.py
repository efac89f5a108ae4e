import io
import logging
import re
import threading
import urllib.parse
from collections import namedtuple

from kskspider.account import BankAccountFinancialStatus, parse_account_identifier, parse_balance
from kskspider.browser import WebBrowser, find_ancestor, submit_by_clicking
from kskspider.camt import decode_transactions
from kskspider.errors import (
    AccountNotFoundError,
    AuthenticationError,
    OffHostNavigationError,
    SessionClosedError,
    StructuralMismatchError,
)

DEFAULT_LOCALE = 'de'
FINANCIAL_STATUS_PATH = '/{locale}/home/onlinebanking/finanzstatus.html'

# charset of the CSV-CAMT export when the response does not declare one
EXPORT_ENCODING = 'iso-8859-15'

SHORT_DATE_FORMATS = {
    'de': '{0:%d.%m.%y}',
    'en': '{0.month}/{0.day}/{0:%y}',
}

HOST_RE = re.compile(r'[\w-]+\.[A-Za-z]{2,}')

def _has_class(name):
    return f'contains(concat(" ", normalize-space(@class), " "), " {name} ")'

LOGIN_FORM = f'//div[{_has_class("loginlogout")}]//form'
LOGIN_ERROR = f'//div[{_has_class("loginlogout")}]//div[{_has_class("msgerror")}]'
USERNAME_INPUT = './/input[@type="text" and not(@size="1")]'
PIN_INPUT = './/input[@type="password"]'
SUBMIT_INPUT = './/input[@type="submit"]'
LOGOUT_CONTROL = f'//*[{_has_class("loginlogout")}]//*[{_has_class("logout")}]'
ACCOUNTS_TABLE = '//caption[@id="kontoTable"]/..'
ACCOUNT_ID = f'.//*[{_has_class("finaccount")}]//*[{_has_class("iban")}]'
BALANCE = f'.//*[{_has_class("balance")}]//span[not({_has_class("balance-predecimal")}) and not({_has_class("balance-decimal")})]'
TRANSACTIONS_BUTTON = './td[5]//div[1]//input[@type="submit"]'
DATE_RANGE_SELECTOR = '//*[@id="zeitraumKalender"]'
DATE_RANGE_INPUTS = './/input[@type="text"]'
EXPORT_BUTTON = './/*[@id="exportGroup"]//input[@type="submit" and contains(@value, "CSV-CAMT")]'

class Credentials(namedtuple('Credentials', ['host', 'username', 'pin'])):
    __slots__ = ()

    def __new__(cls, host, username, pin):
        if not HOST_RE.fullmatch(host):
            raise ValueError(f'The host should only be the domain of the bank, e.g. kskbb.de (got {host!r})')
        return super().__new__(cls, host, username, pin)

    def __repr__(self):
        return f'Credentials(host={self.host!r}, username={self.username!r}, pin=***)'

def format_short_date(day, locale):
    return SHORT_DATE_FORMATS.get(locale, SHORT_DATE_FORMATS[DEFAULT_LOCALE]).format(day)

def locale_from_url(url):
    segments = [s for s in urllib.parse.urlsplit(url).path.split('/') if s]
    if segments and re.fullmatch('[a-z]{2}', segments[0]):
        return segments[0]
    return DEFAULT_LOCALE

def _first(node, xpath, what, url):
    found = node.xpath(xpath)
    if not found:
        raise StructuralMismatchError(what, url)
    return found[0]

def _enclosing_form(element, what, url):
    form = element if element.tag == 'form' else find_ancestor(element, 'form')
    if form is None:
        raise StructuralMismatchError(what, url)
    return form

def _account_status(tr, locale):
    ids = tr.xpath(ACCOUNT_ID)
    balances = tr.xpath(BALANCE)
    if not ids or not balances:
        return None
    try:
        balance = parse_balance(balances[0].text_content(), locale)
    except ValueError:
        logging.debug('skipping account row with unreadable balance')
        return None
    return BankAccountFinancialStatus(parse_account_identifier(ids[0].text_content().strip()), balance)

class Session:
    '''
    A logged in online banking session. Obtain one with ``Session.open`` (or
    ``with_session``) and release it with ``close``.

    All operations that load pages hold ``lock``, so a session can be shared
    between threads; calls are serialized.
    '''

    def __init__(self, browser, login_result, locale):
        self.browser = browser
        self.current_page = login_result
        self.locale = locale
        self.closed = False
        self.lock = threading.RLock()

    @classmethod
    def open(cls, credentials, browser=None, locale=None):
        if browser is None:
            browser = WebBrowser(domain=credentials.host)
        elif browser.domain is None:
            browser.domain = credentials.host

        front_page = browser.get(f'https://{credentials.host}/')
        login_form = _first(front_page.document, LOGIN_FORM, 'the login form', front_page.url)
        _first(login_form, USERNAME_INPUT, 'the username input', front_page.url).value = credentials.username
        _first(login_form, PIN_INPUT, 'the PIN input', front_page.url).value = credentials.pin
        buttons = login_form.xpath(SUBMIT_INPUT)

        logging.info('logging in to %s', credentials.host)
        login_result = browser.load(submit_by_clicking(login_form, buttons[0] if buttons else None))

        errors = login_result.document.xpath(LOGIN_ERROR)
        if errors:
            messages = errors[0].xpath('.//ul/li')
            raise AuthenticationError((messages[0] if messages else errors[0]).text_content().strip())

        if locale is None:
            locale = locale_from_url(login_result.url)
        logging.info('logged in, locale %s', locale)
        return cls(browser, login_result, locale)

    @property
    def host(self):
        return urllib.parse.urlsplit(self.current_page.url).hostname

    @property
    def cookies(self):
        return dict(self.browser.cookies)

    def _check_open(self):
        if self.closed:
            raise SessionClosedError('The session has been closed')

    def navigate(self, target, force=False):
        '''
        Loads ``target`` (absolute or relative to the current page) unless the
        current page already has that path and ``force`` is false.
        '''
        with self.lock:
            self._check_open()
            current = urllib.parse.urlsplit(self.current_page.url)
            url = urllib.parse.urljoin(self.current_page.url, target)
            parsed = urllib.parse.urlsplit(url)

            if parsed.hostname != current.hostname:
                raise OffHostNavigationError(parsed.hostname, current.hostname)

            if parsed.path == current.path and not force:
                return self.current_page

            self.current_page = self.browser.get(url)
            return self.current_page

    def _scan_accounts(self, locale):
        '''Returns (tr, BankAccountFinancialStatus) for each account row.'''
        page = self.navigate(FINANCIAL_STATUS_PATH.format(locale=locale), force=True)
        table = _first(page.document, ACCOUNTS_TABLE, 'the accounts table', page.url)
        accounts = []
        for tr in table.xpath('.//tr'):
            status = _account_status(tr, locale)
            if status is not None:
                accounts.append((tr, status))
        logging.debug('found %d accounts', len(accounts))
        return accounts

    def get_financial_status(self):
        with self.lock:
            self._check_open()
            return [status for _, status in self._scan_accounts(self.locale)]

    def get_transactions_in_time_range(self, account_id, date_from, date_to):
        if date_from > date_to:
            raise ValueError(f'{date_from} is after {date_to}')
        if isinstance(account_id, str):
            account_id = parse_account_identifier(account_id)

        with self.lock:
            self._check_open()
            for tr, status in self._scan_accounts(self.locale):
                if status.account_id == account_id:
                    break
            else:
                raise AccountNotFoundError(account_id)

            url = self.current_page.url
            button = _first(tr, TRANSACTIONS_BUTTON, 'the transactions button of the account row', url)
            form = _enclosing_form(tr, 'the form around the accounts table', url)
            self.current_page = self.browser.load(submit_by_clicking(form, button))

            page = self.current_page
            selector = _first(page.document, DATE_RANGE_SELECTOR, 'the date range selector', page.url)
            inputs = selector.xpath(DATE_RANGE_INPUTS)
            if len(inputs) < 2:
                raise StructuralMismatchError('the date range inputs', page.url)
            inputs[0].value = format_short_date(date_from, self.locale)
            inputs[1].value = format_short_date(date_to, self.locale)

            form = _enclosing_form(selector, 'the form around the date range selector', page.url)
            export_button = _first(form, EXPORT_BUTTON, 'the CSV-CAMT export button', page.url)

            with self.browser.open(submit_by_clicking(form, export_button)) as response:
                encoding = response.headers.get_content_charset() or EXPORT_ENCODING
                if encoding.lower().replace('-', '') == 'utf8':
                    encoding = 'utf-8-sig'
                transactions = decode_transactions(io.TextIOWrapper(response, encoding=encoding, newline=''))

            logging.debug('decoded %d transactions', len(transactions))
            return transactions

    def close(self):
        with self.lock:
            if self.closed:
                return

            page = self.current_page
            logout = _first(page.document, LOGOUT_CONTROL, 'the logout control', page.url)
            form = _enclosing_form(logout, 'the logout form', page.url)
            if logout.tag == 'input' and logout.get('type') == 'submit':
                button = logout
            else:
                button = _first(logout, SUBMIT_INPUT, 'the logout button', page.url)

            self.current_page = self.browser.load(submit_by_clicking(form, button))
            self.closed = True
            logging.info('logged out')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

def with_session(credentials, body, **kwargs):
    '''Runs ``body(session)`` on a fresh session and always logs out afterwards.'''
    session = Session.open(credentials, **kwargs)
    try:
        result = body(session)
    except BaseException:
        # the error from body wins over a failed logout
        try:
            session.close()
        except Exception:
            logging.warning('logout failed', exc_info=True)
        raise
    session.close()
    return result
