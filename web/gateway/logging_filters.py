"""Logging filter adding the current request id to every record.

Install it on the handlers in ``LOGGING`` so the JSON formatter can always
reference ``%(request_id)s``; records emitted outside a request (management
commands, startup) carry ``"-"``.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
