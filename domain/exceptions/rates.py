class RatesException(Exception):
    pass


class InvalidCurrencyError(RatesException):
    pass


class InvalidMarginError(RatesException):
    pass


class RatesUnavailableError(RatesException):
    pass


class ProviderError(RatesException):
    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class TransientProviderError(ProviderError):
    """Timeouts, dropped connections, 5xx and maintenance windows. Safe to retry."""


class MalformedResponseError(ProviderError):
    pass


class RateLimitedError(ProviderError):
    def __init__(self, message: str, provider: str | None = None, retry_after_seconds: int | None = None):
        super().__init__(message, provider)
        self.retry_after_seconds = retry_after_seconds


class OrderNotFoundError(RatesException):
    pass
