class AuthenticationMissing(Exception):
    """No valid access token is available. The scan is not attempted."""

    def __init__(self, message: str = "not_authenticated") -> None:
        super().__init__(message)


class ProviderFetchFailure(Exception):
    """A catalog fetch returned a non-success status or failed in transport."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class MalformedImportFile(Exception):
    """A restored snapshot or progress file failed structural validation."""


class RateLimited(Exception):
    """Operation was rate limited by provider. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms
