"""Error taxonomy for the claims oracle protocol.

Configuration errors and protocol violations are raised synchronously at the
registry/broker boundary. A rejected call never mutates broker state.
"""


class OracleError(Exception):
    """Base exception for oracle protocol errors."""

    pass


class ConfigurationError(OracleError):
    """Raised when registry or broker setup is inconsistent."""

    pass


class DuplicateProviderError(ConfigurationError):
    """Raised when a provider with the same endpoint and descriptor (or address) exists."""

    pass


class UnknownProviderError(ConfigurationError):
    """Raised when removing or looking up a provider that is not registered."""

    pass


class NoProvidersRegisteredError(ConfigurationError):
    """Raised when a query is submitted while the registry is empty."""

    pass


class ProtocolViolation(OracleError):
    """Raised when a fulfillment is rejected by the broker.

    :ivar request_id: Request identifier the offending call referenced.
    """

    def __init__(self, request_id: str, message: str):
        """Initialize the violation.

        :param request_id: Request identifier from the rejected call.
        :param message: Human readable reason.
        """
        self.request_id = request_id
        super().__init__(f"{message} (request {request_id})")


class UnknownRequestError(ProtocolViolation):
    """Raised when a fulfillment references a request that does not exist."""

    def __init__(self, request_id: str):
        super().__init__(request_id, "Unknown request")


class NotAuthorizedProviderError(ProtocolViolation):
    """Raised when the caller is not the provider the request was sent to.

    :ivar caller: Identity that attempted the fulfillment.
    """

    def __init__(self, request_id: str, caller: str):
        self.caller = caller
        super().__init__(request_id, f"Caller {caller} is not the target provider")


class AlreadyFulfilledError(ProtocolViolation):
    """Raised when a request is fulfilled a second time."""

    def __init__(self, request_id: str):
        super().__init__(request_id, "Request already fulfilled")


class InvalidValueError(ProtocolViolation):
    """Raised when a fulfillment value does not match the query kind."""

    def __init__(self, request_id: str, value: object):
        self.value = value
        super().__init__(request_id, f"Invalid fulfillment value {value!r}")


class InvalidSignatureError(ProtocolViolation):
    """Raised when a signed fulfillment cannot be verified."""

    def __init__(self, request_id: str):
        super().__init__(request_id, "Fulfillment signature could not be recovered")


class BrokerUnavailableError(OracleError):
    """Raised when the broker cannot be reached or a transaction does not confirm.

    :ivar request_id: Request the failed call was about.
    """

    def __init__(self, request_id: str, message: str):
        self.request_id = request_id
        super().__init__(f"{message} (request {request_id})")


class ResultNotReadyError(OracleError):
    """Raised by consumers that require a finalized result which is still absent.

    :ivar query_key: Key of the unfinalized query.
    """

    def __init__(self, query_key: str):
        self.query_key = query_key
        super().__init__(f"Result for query {query_key} is not available yet")
