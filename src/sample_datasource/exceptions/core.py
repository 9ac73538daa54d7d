class DatasourceError(Exception):
    pass

class ConfigError(DatasourceError):
    pass


class QueryError(DatasourceError):
    """Malformed or invalid query; reported against a single ref_id."""

    def __init__(self, message: str, *, ref_id: str | None = None):
        super().__init__(message)
        self.ref_id = ref_id


class StreamError(DatasourceError):
    pass


class SessionClosedError(StreamError):
    """The owning instance was disposed while a stream was running."""


class StreamDeliveryError(StreamError):
    """Packets could not be delivered downstream and the send policy gave up."""
