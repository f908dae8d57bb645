class QueryExecutionError(Exception):
    """Base class for failures while running an already validated query."""

    status_code = 500
    title = "Database error"
    retriable = True

    def __init__(self, message: str, elapsed_ms: int = 0):
        super().__init__(message)
        self.message = message
        self.elapsed_ms = elapsed_ms


class ConnectionTimeout(QueryExecutionError):
    status_code = 408
    title = "Connection timeout"


class QueryTimeout(QueryExecutionError):
    status_code = 408
    title = "Query timeout"


class PermissionDenied(QueryExecutionError):
    status_code = 403
    title = "Database access denied"
    retriable = False


class SqlSyntaxError(QueryExecutionError):
    status_code = 400
    title = "SQL syntax error"


class ObjectNotFound(QueryExecutionError):
    status_code = 404
    title = "Database object not found"
    retriable = False


class DatabaseError(QueryExecutionError):
    pass


class PlanningFailed(Exception):
    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class SynthesisFailed(Exception):
    pass
