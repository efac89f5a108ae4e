class SpiderError(Exception):
    pass

class AuthenticationError(SpiderError):
    '''The portal rejected the login. `message` is the portal's own text.'''

    def __init__(self, message):
        super().__init__(message)
        self.message = message

class NavigationError(SpiderError):
    pass

class OffHostNavigationError(NavigationError):
    def __init__(self, host, current_host):
        super().__init__(f'Will not navigate off the bank host website! (Trying to navigate to {host}, bank is at {current_host})')
        self.host = host
        self.current_host = current_host

class StructuralMismatchError(NavigationError):
    '''An element the workflow relies on is missing from the page.'''

    def __init__(self, what, url=None):
        message = f'Could not find {what}'
        if url is not None:
            message += f' on {url}'
        super().__init__(message)
        self.what = what
        self.url = url

class AccountNotFoundError(SpiderError):
    def __init__(self, account_id):
        super().__init__(f'Account with identifier {account_id} not found.')
        self.account_id = account_id

class InvalidIdentifierError(SpiderError, ValueError):
    pass

class DecodeError(SpiderError):
    def __init__(self, row, column, message):
        super().__init__(f'row {row}, column {column!r}: {message}')
        self.row = row
        self.column = column

class SessionClosedError(SpiderError):
    pass
