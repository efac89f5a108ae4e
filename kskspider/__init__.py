from kskspider.account import (
    IBAN,
    BankAccountFinancialStatus,
    MoneyAmount,
    UnknownAccountIdentifier,
    format_account_identifier,
    parse_account_identifier,
)
from kskspider.camt import Transaction, decode_transactions
from kskspider.errors import (
    AccountNotFoundError,
    AuthenticationError,
    DecodeError,
    InvalidIdentifierError,
    NavigationError,
    OffHostNavigationError,
    SessionClosedError,
    SpiderError,
    StructuralMismatchError,
)
from kskspider.session import Credentials, Session, with_session
