from __future__ import annotations

from typing import Any, Dict

from django.conf import settings

from .services.errors import ConfigurationError

DEFAULTS: Dict[str, Any] = {
    "LEDGER_BACKEND": "memory",
    "INVOICING_BACKEND": "memory",
    "PARSER_BACKEND": "spreadsheet",
    "LEDGER_URL": "http://localhost:3001/api",
    "INVOICING_URL": "http://localhost:3001/api",
    "PARSER_URL": "http://localhost:3001/api",
    "API_KEY": "",
    "HTTP_TIMEOUT": 15,
    "DISPLAY_WINDOW": 100,
    "DEFAULT_CURRENCY": "EUR",
    "DEFAULT_LANGUAGE": "en",
}


def invoicing_settings() -> Dict[str, Any]:
    """Defaults overlaid with ``settings.INVOICING``."""
    merged = dict(DEFAULTS)
    merged.update(getattr(settings, "INVOICING", None) or {})
    return merged


def invoicing_setting(key: str) -> Any:
    values = invoicing_settings()
    if key not in values:
        raise ConfigurationError(f"Unknown invoicing setting: {key}")
    return values[key]
