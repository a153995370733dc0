"""
Error taxonomy shared by the store and the synchronizers.

- ValidationError: a malformed record was handed to a Collection
- NotFoundError: an operation referenced a key that is not present
- TransportError: a Backend Gateway call did not complete
- BackendRejection: the call completed but the backend reported a failure
"""


class ClientError(Exception):
    """Base class for every error raised by egdata_client."""


class ValidationError(ClientError):
    pass


class NotFoundError(ClientError, KeyError):
    def __init__(self, collection: str, key):
        self.collection = collection
        self.key = key
        super().__init__(f"{collection}: no record with key {key!r}")

    def __str__(self):
        return self.args[0]


class TransportError(ClientError):
    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class BackendRejection(ClientError):
    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.reason = message
        super().__init__(f"{operation} rejected: {message}")
