from __future__ import annotations

import logging
from typing import Optional

from ..conf import invoicing_setting

logger = logging.getLogger(__name__)


def _key(name: Optional[str], setting: str) -> str:
    return (name or invoicing_setting(setting) or "").strip().lower()


def load_ledger_client(name: Optional[str] = None):
    """
    Lazy-load the ledger service client.
    - 'http', 'api' -> HttpLedgerClient
    - 'memory', None -> InMemoryLedger
    """
    key = _key(name, "LEDGER_BACKEND")
    if key in {"http", "api"}:
        from .http import HttpLedgerClient  # local import to keep requests optional at import time
        return HttpLedgerClient()
    if key not in {"memory", "in_memory"}:
        logger.warning("Unknown ledger backend %r; using in-memory ledger", key)
    from .memory import InMemoryLedger
    return InMemoryLedger()


def load_invoicing_client(name: Optional[str] = None):
    key = _key(name, "INVOICING_BACKEND")
    if key in {"http", "api"}:
        from .http import HttpInvoicingClient
        return HttpInvoicingClient()
    if key not in {"memory", "in_memory"}:
        logger.warning("Unknown invoicing backend %r; using in-memory service", key)
    from .memory import InMemoryInvoicingService
    return InMemoryInvoicingService()


def load_document_parser(name: Optional[str] = None):
    key = _key(name, "PARSER_BACKEND")
    if key in {"http", "api"}:
        from .http import HttpDocumentParser
        return HttpDocumentParser()
    if key not in {"spreadsheet", "xlsx", "local"}:
        logger.warning("Unknown parser backend %r; using spreadsheet parser", key)
    from .spreadsheet import SpreadsheetStatementParser
    return SpreadsheetStatementParser()
