import logging
import time
import urllib.parse
import urllib.request
from collections import namedtuple

import lxml.etree
import lxml.html

from kskspider.errors import OffHostNavigationError, StructuralMismatchError

USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:115.0) Gecko/20100101 Firefox/115.0'
ACCEPT_LANGUAGE = 'de-DE,de;q=0.8,en-US;q=0.5,en;q=0.3'

# seconds to wait before each request
REQUEST_DELAY = 1
REQUEST_TIMEOUT = 60

LoadedPage = namedtuple('LoadedPage', ['url', 'status', 'cookies', 'document'])

def parse_set_cookie(headers):
    for cookie in headers.get_all('Set-Cookie') or []:
        k, _, v = cookie.partition(';')[0].partition('=')
        yield k.strip(), v.strip()

class CookieRedirectHandler(urllib.request.HTTPRedirectHandler):
    '''Picks up cookies set by redirect responses and sends them along.'''

    def __init__(self, browser):
        self.browser = browser

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        host = urllib.parse.urlsplit(newurl).hostname
        if not self.browser.is_on_domain(host):
            raise OffHostNavigationError(host, urllib.parse.urlsplit(req.full_url).hostname)
        self.browser.update_cookies(headers)
        new_request = super().redirect_request(req, fp, code, msg, headers, newurl)
        if new_request is not None:
            logging.debug('redirect %d to %s', code, newurl)
            if self.browser.cookies:
                new_request.add_header('Cookie', self.browser.cookie_header())
        return new_request

class WebBrowser:
    def __init__(self, delay=REQUEST_DELAY, timeout=REQUEST_TIMEOUT, headers=None, opener=None, domain=None):
        self.cookies = {}
        # redirects may only lead to this domain or its subdomains
        self.domain = domain
        self.delay = delay
        self.timeout = timeout
        self.headers = headers
        if opener is None:
            opener = urllib.request.build_opener(CookieRedirectHandler(self))
        self.opener = opener

    def is_on_domain(self, host):
        if self.domain is None:
            return True
        host = (host or '').lower()
        domain = self.domain.lower()
        return host == domain or host.endswith('.' + domain)

    def cookie_header(self):
        return '; '.join(f'{k}={v}' for k, v in self.cookies.items())

    def update_cookies(self, headers):
        names = []
        for k, v in parse_set_cookie(headers):
            self.cookies[k] = v
            names.append(k)
        if names:
            logging.debug('cookies set: %s', ', '.join(names))

    def open(self, request):
        '''Sends the request and returns the raw response; the caller closes it.'''
        logging.debug('%s %s', request.get_method(), request.full_url)
        if self.delay:
            time.sleep(self.delay)
        request.add_header('Accept', 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8')
        request.add_header('Accept-Language', ACCEPT_LANGUAGE)
        request.add_header('User-Agent', USER_AGENT)
        if self.cookies:
            request.add_header('Cookie', self.cookie_header())
        if self.headers is not None:
            for k, v in self.headers.items():
                request.add_header(k, v)
        response = self.opener.open(request, timeout=self.timeout)
        host = urllib.parse.urlsplit(response.geturl()).hostname
        if not self.is_on_domain(host):
            response.close()
            raise OffHostNavigationError(host, self.domain)
        self.update_cookies(response.headers)
        return response

    def load(self, request):
        with self.open(request) as response:
            url = response.geturl()
            status = response.getcode()
            cookies = dict(parse_set_cookie(response.headers))
            charset = response.headers.get_content_charset()
            data = response.read()
        parser = lxml.html.HTMLParser(encoding=charset) if charset else None
        try:
            document = lxml.html.document_fromstring(data, parser=parser, base_url=url)
        except lxml.etree.LxmlError as e:
            raise StructuralMismatchError('an HTML document', url) from e
        return LoadedPage(url, status, cookies, document)

    def get(self, url):
        return self.load(urllib.request.Request(url))

def find_ancestor(element, match):
    '''
    Returns the nearest ancestor of ``element`` whose tag is ``match`` or, if
    ``match`` is callable, for which ``match(ancestor)`` is true.
    '''
    if isinstance(match, str):
        tag = match
        match = lambda el: el.tag == tag
    for ancestor in element.iterancestors():
        if match(ancestor):
            return ancestor
    return None

def _form_encoding(form):
    # accept-charset, then the document charset; both must be ASCII compatible
    candidates = form.get('accept-charset', '').split()
    candidates.append(form.getroottree().docinfo.encoding or 'utf-8')
    for encoding in candidates:
        try:
            if 'a=1'.encode(encoding) == b'a=1':
                return encoding
        except LookupError:
            pass
    return 'utf-8'

def submit_by_clicking(form, button=None):
    '''
    Builds the request a browser sends when ``button`` is clicked inside
    ``form``. Of all submit controls only the clicked one contributes its
    name/value pair; with no button the form is submitted without any.
    '''
    action = form.action or form.base_url
    if not action:
        raise StructuralMismatchError('an action URL for the form')

    values = form.form_values()
    if button is not None and button.get('name'):
        values.append((button.get('name'), button.get('value', '')))
    data = urllib.parse.urlencode(values, encoding=_form_encoding(form), errors='xmlcharrefreplace')

    if form.method == 'POST':
        return urllib.request.Request(action, data.encode('ascii'), method='POST')
    url = urllib.parse.urlsplit(action)._replace(query=data, fragment='').geturl()
    return urllib.request.Request(url, method='GET')
