from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-not-secret")
DEBUG = os.environ.get("DJANGO_DEBUG", "1") == "1"
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "invoice_engine",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "invoice_engine.urls"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "COERCE_DECIMAL_TO_STRING": True,
}

# Collaborator wiring and engine knobs; see invoice_engine/conf.py for defaults.
INVOICING = {
    "LEDGER_BACKEND": os.environ.get("INVOICING_LEDGER_BACKEND", "memory"),
    "INVOICING_BACKEND": os.environ.get("INVOICING_SERVICE_BACKEND", "memory"),
    "PARSER_BACKEND": os.environ.get("INVOICING_PARSER_BACKEND", "spreadsheet"),
    "LEDGER_URL": os.environ.get("INVOICING_LEDGER_URL", "http://localhost:3001/api"),
    "INVOICING_URL": os.environ.get("INVOICING_SERVICE_URL", "http://localhost:3001/api"),
    "PARSER_URL": os.environ.get("INVOICING_PARSER_URL", "http://localhost:3001/api"),
    "API_KEY": os.environ.get("INVOICING_API_KEY", ""),
    "HTTP_TIMEOUT": int(os.environ.get("INVOICING_HTTP_TIMEOUT", 15)),
    "DISPLAY_WINDOW": int(os.environ.get("INVOICING_DISPLAY_WINDOW", 100)),
    "DEFAULT_CURRENCY": os.environ.get("INVOICING_DEFAULT_CURRENCY", "EUR"),
    "DEFAULT_LANGUAGE": os.environ.get("INVOICING_DEFAULT_LANGUAGE", "en"),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "invoice_engine": {
            "handlers": ["console"],
            "level": os.environ.get("INVOICING_LOG_LEVEL", "INFO"),
        },
    },
}
