"""Constants for the XGATE API client."""

__version__ = "1.0.0"

BASE_URL = "https://api.xgate.global"
USER_AGENT = f"xgate-api-python/{__version__}"

AUTH_TOKEN_ENDPOINT = "/auth/token"

CUSTOMER_ENDPOINT = "/customer"
CUSTOMER_DETAIL_ENDPOINT = "/customer/{customer_id}"

PIX_KEYS_ENDPOINT = "/pix/keys"
PIX_KEY_DETAIL_ENDPOINT = "/pix/keys/{pix_key_id}"
PIX_KEYS_SEARCH_ENDPOINT = "/pix/keys/search"

DEPOSITS_ENDPOINT = "/deposits"
DEPOSIT_DETAIL_ENDPOINT = "/deposits/{deposit_id}"
DEPOSITS_SEARCH_ENDPOINT = "/deposits/search"
DEPOSIT_CURRENCIES_ENDPOINT = "/deposits/currencies"

WITHDRAWALS_ENDPOINT = "/withdrawals"
WITHDRAWAL_DETAIL_ENDPOINT = "/withdrawals/{withdrawal_id}"
WITHDRAWALS_SEARCH_ENDPOINT = "/withdrawals/search"
WITHDRAWAL_CURRENCIES_ENDPOINT = "/withdrawals/currencies"

EXCHANGE_RATE_ENDPOINT = "/exchange-rates/{from_currency}/{to_currency}"
EXCHANGE_RATE_HISTORY_ENDPOINT = "/exchange-rates/{from_currency}/{to_currency}/history"
CRYPTO_RATE_ENDPOINT = "/crypto/rates/{crypto_currency}/{fiat_currency}"

COMPANY_CURRENCIES_ENDPOINT = "/deposit/company/currencies"
COMPANY_CRYPTOCURRENCIES_ENDPOINT = "/deposit/company/cryptocurrencies"
TETHER_CONVERSION_ENDPOINT = "/deposit/conversion/tether"

DEFAULT_TIMEOUT_SECONDS = 30.0

# Retry policy defaults
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 30.0
DEFAULT_RATE_LIMIT_CEILING_SECONDS = 60

# Body fields checked, in order, for a human readable error message
ERROR_MESSAGE_FIELDS = ("message", "error", "error_message", "detail", "title")

SENSITIVE_HEADERS = frozenset({"authorization", "x-api-key", "cookie", "set-cookie"})
SENSITIVE_BODY_FIELDS = ("password", "token", "api_key", "secret", "private_key")
