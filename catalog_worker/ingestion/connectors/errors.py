"""Exceptions raised by source connectors."""


class ConnectorError(Exception):
    """A connector could not continue scanning its catalog."""


class ConnectorFetchError(ConnectorError):
    """A request kept failing at the transport level after all retries."""

    def __init__(self, url: str, attempts: int, cause: Exception) -> None:
        self.url = url
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Request to {url} failed after {attempts} attempts: {cause}")


class UnknownConnectorError(ConnectorError):
    """No implementation is registered for a connector type tag."""
