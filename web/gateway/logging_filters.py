"""Logging filters for enriching log records with request context.

This module provides a logging filter that injects the current request id
and caller into log records using the ContextVars set by the gateway
middleware. Adding the filter to the logging configuration enables
per-request correlation in logs without modifying individual log
statements.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX, USER_REF_CTX


class RequestIdFilter(Filter):
    """Attach ``request_id`` and ``user_ref`` attributes to log records.

    Values come from the ContextVars set by ``RequestIdMiddleware`` and
    ``TrustedPrincipalMiddleware``. Outside a request a hyphen ("-") is
    used as a placeholder so formatters can reliably reference them.
    """

    def filter(self, record: LogRecord) -> bool:
        """Populate the record and allow it to be logged.

        Returns:
            bool: Always True to indicate the record should be processed.
        """
        record.request_id = REQUEST_ID_CTX.get()
        record.user_ref = USER_REF_CTX.get()
        return True
