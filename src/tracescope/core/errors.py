class TraceAnalysisError(Exception):
    pass


class EmptyTraceError(TraceAnalysisError):
    """The trace source returned nothing usable (null / missing result)."""


class InvalidStructLogError(TraceAnalysisError):
    """structLogs payload is missing or is not a list."""


class DataSourceError(TraceAnalysisError):
    pass


class RateLimitError(DataSourceError):
    pass
