"""Errors raised by the conversion engine.

Every error carries a user-facing ``message`` and the HTTP status the API
answers with. Internal details go to the log, never into ``message``.
"""


class ConversionError(Exception):
    status_code = 400
    message = "Conversion failed"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidAmount(ConversionError):
    message = "Invalid amount"


class UnsupportedToken(ConversionError):
    message = "Token cannot be converted to Naira"


class InsufficientBalance(ConversionError):
    message = "Insufficient balance"


class NoActiveRate(ConversionError):
    status_code = 503
    message = "Exchange rate not configured. Please contact support."


class WalletNotFound(ConversionError):
    status_code = 404
    message = "Wallet not found"


class ConversionNotFound(ConversionError):
    status_code = 404
    message = "Conversion not found"


class ExchangeRateNotFound(ConversionError):
    status_code = 404
    message = "Exchange rate not found"


class InvalidPin(ConversionError):
    status_code = 401
    message = "Invalid transaction PIN"


class TransactionConflict(ConversionError):
    status_code = 409
    message = "Transaction conflict, please retry"


class Unexpected(ConversionError):
    status_code = 500
    message = "Conversion could not be completed"
