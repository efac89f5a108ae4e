import email.message
import io

import pytest

from kskspider.browser import WebBrowser

HOST = 'www.kskbb.de'
FRONT_URL = 'https://kskbb.de/'
HOME_URL = f'https://{HOST}/de/home.html'
OVERVIEW_URL = f'https://{HOST}/de/home/onlinebanking/uebersicht.html'
FINANCIAL_STATUS_URL = f'https://{HOST}/de/home/onlinebanking/finanzstatus.html'
TRANSACTIONS_URL = f'https://{HOST}/de/home/onlinebanking/umsaetze.html'
LOGOUT_URL = f'https://{HOST}/de/home/logout.html'

LOGOUT_FORM = '''
<div class="loginlogout">
  <form action="/de/home/logout.html" method="post">
    <input type="hidden" name="logoutToken" value="lt">
    <div class="logout"><input type="submit" name="logout" value="Abmelden"></div>
  </form>
</div>
'''

def page(body):
    return f'<html><head><meta charset="utf-8"><title>Sparkasse</title></head><body>{body}</body></html>'

FRONT_PAGE = page('''
<div class="loginlogout">
  <form action="/de/home.html" method="post">
    <input type="hidden" name="token" value="abc">
    <input type="text" name="x" size="1" value="">
    <input type="text" name="user" value="">
    <input type="password" name="pin" value="">
    <input type="submit" name="login" value="Anmelden">
  </form>
</div>
''')

LOGIN_FAILED_PAGE = page('''
<div class="loginlogout">
  <div class="msgerror"><ul><li>Anmeldename oder PIN falsch.</li></ul></div>
  <form action="/de/home.html" method="post">
    <input type="text" name="user" value="">
    <input type="password" name="pin" value="">
    <input type="submit" name="login" value="Anmelden">
  </form>
</div>
''')

OVERVIEW_PAGE = page(LOGOUT_FORM + '<h1>Willkommen</h1>')

FINANCIAL_STATUS_PAGE = page(LOGOUT_FORM + '''
<form action="/de/home/onlinebanking/finanzstatus.html" method="post">
  <input type="hidden" name="state" value="s1">
  <table>
    <caption id="kontoTable">Konten</caption>
    <thead><tr><th>Konto</th><th>Art</th><th></th><th>Saldo</th><th>Aktionen</th></tr></thead>
    <tbody>
      <tr>
        <td class="finaccount"><span class="name">Giro</span> <span class="iban">DE89 3704 0044 0532 0130 00</span></td>
        <td>Girokonto</td>
        <td></td>
        <td class="balance"><span class="balance-predecimal">1.234</span><span class="balance-decimal">,56</span><span>1.234,56 EUR</span></td>
        <td>
          <div><input type="submit" name="umsaetze_0" value="Umsaetze"></div>
          <div><input type="submit" name="ueberweisung_0" value="Ueberweisung"></div>
        </td>
      </tr>
      <tr>
        <td class="finaccount"><span class="iban">Kreditkarte 1234</span></td>
        <td>Kreditkarte</td>
        <td></td>
        <td class="balance"><span>-50,00 EUR</span></td>
        <td><div><input type="submit" name="umsaetze_1" value="Umsaetze"></div></td>
      </tr>
      <tr><td colspan="5">Summe</td></tr>
    </tbody>
  </table>
</form>
''')

TRANSACTIONS_PAGE = page(LOGOUT_FORM + '''
<form action="/de/home/onlinebanking/umsaetze.html" method="post">
  <input type="hidden" name="konto" value="0">
  <div id="zeitraumKalender">
    <input type="text" name="von" value="">
    <input type="text" name="bis" value="">
  </div>
  <div id="exportGroup">
    <input type="submit" name="exportPdf" value="PDF">
    <input type="submit" name="exportCamt" value="CSV-CAMT-Format">
    <input type="submit" name="exportMt940" value="CSV-MT940-Format">
  </div>
  <input type="submit" name="refresh" value="Aktualisieren">
</form>
''')

LOGGED_OUT_PAGE = page('<p>Sie wurden abgemeldet.</p>')

CSV_HEADER = '"Auftragskonto";"Buchungstag";"Valutadatum";"Buchungstext";"Verwendungszweck";"Glaeubiger ID";"Mandatsreferenz";"Kundenreferenz (End-to-End)";"Sammlerreferenz";"Lastschrift Ursprungsbetrag";"Auslagenersatz Ruecklastschrift";"Beguenstigter/Zahlungspflichtiger";"Kontonummer/IBAN";"BIC (SWIFT-Code)";"Betrag";"Waehrung";"Info"\n'
CSV_ROWS = [
    '"DE89370400440532013000";"02.01.19";"02.01.19";"FOLGELASTSCHRIFT";"Strom Januar";"DE98ZZZ09999999999";"M-123";"E2E-1";"";"";"";"Stadtwerke Müller";"DE56370501980000012345";"COLSDE33XXX";"-45,50";"EUR";"Umsatz gebucht"\n',
    '"DE89370400440532013000";"03.01.19";"04.01.19";"GUTSCHRIFT";"Gehalt";"";"";"";"";"";"";"Arbeitgeber GmbH";"1234567";"";"2.500,00";"EUR";"Umsatz gebucht"\n',
]
CSV_EXPORT = CSV_HEADER + ''.join(CSV_ROWS)

class FakeResponse(io.BytesIO):
    def __init__(self, url, body, cookies=(), content_type='text/html; charset=utf-8', status=200):
        super().__init__(body)
        self.url = url
        self.status = status
        self.headers = email.message.Message()
        self.headers['Content-Type'] = content_type
        for cookie in cookies:
            self.headers['Set-Cookie'] = cookie

    def geturl(self):
        return self.url

    def getcode(self):
        return self.status

class FakeOpener:
    '''Serves canned responses keyed by (method, url without query).'''

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, url, body, final_url=None, cookies=(), content_type='text/html; charset=utf-8', encoding='utf-8'):
        self.routes[(method, url)] = (body.encode(encoding), final_url or url, cookies, content_type)

    def open(self, request, timeout=None):
        self.requests.append(request)
        key = (request.get_method(), request.full_url.split('?')[0])
        assert key in self.routes, f'unexpected request {key}'
        body, final_url, cookies, content_type = self.routes[key]
        return FakeResponse(final_url, body, cookies, content_type)

    def requested(self, method, url):
        return [r for r in self.requests if r.get_method() == method and r.full_url.split('?')[0] == url]

@pytest.fixture
def opener():
    opener = FakeOpener()
    opener.add('GET', FRONT_URL, FRONT_PAGE, final_url=HOME_URL, cookies=['JSESSIONID=front; Path=/; HttpOnly'])
    opener.add('POST', HOME_URL, OVERVIEW_PAGE, final_url=OVERVIEW_URL, cookies=['auth=token1; Path=/; Secure'])
    opener.add('GET', FINANCIAL_STATUS_URL, FINANCIAL_STATUS_PAGE, cookies=['JSESSIONID=s2; Path=/'])
    opener.add('POST', FINANCIAL_STATUS_URL, TRANSACTIONS_PAGE, final_url=TRANSACTIONS_URL)
    opener.add('POST', TRANSACTIONS_URL, CSV_EXPORT, cookies=['export=done'], content_type='text/csv; charset=ISO-8859-1', encoding='iso-8859-1')
    opener.add('POST', LOGOUT_URL, LOGGED_OUT_PAGE)
    return opener

@pytest.fixture
def browser(opener):
    return WebBrowser(delay=0, opener=opener)
