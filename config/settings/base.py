# config/settings/base.py
from pathlib import Path
import os
from dotenv import load_dotenv
from datetime import timedelta


BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "unsafe-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = ["*"]

INSTALLED_APPS = [
    # Django
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third-party
    "corsheaders",
    "rest_framework",
    "rest_framework_simplejwt",
    "drf_spectacular",
    "django_filters",

    # Pipeline apps
    "dx_core.common.apps.CommonConfig",
    "dx_core.audit.apps.AuditConfig",
    "dx_core.catalog.apps.CatalogConfig",
    "dx_core.orders.apps.OrdersConfig",
    "dx_core.specimens.apps.SpecimensConfig",
    "dx_core.processing.apps.ProcessingConfig",
    "dx_core.alerts.apps.AlertsConfig",
    "dx_core.results.apps.ResultsConfig",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("DB_NAME", "dx"),
        "USER": os.getenv("DB_USER", "dx"),
        "PASSWORD": os.getenv("DB_PASSWORD", "dx"),
        "HOST": os.getenv("DB_HOST", "127.0.0.1"),
        "PORT": os.getenv("DB_PORT", "5432"),
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",

    # Standard error envelope
    "EXCEPTION_HANDLER": "dx_core.common.api.exceptions.api_exception_handler",

    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
        "rest_framework.filters.SearchFilter",
    ],

    "DEFAULT_PAGINATION_CLASS": "dx_core.common.api.pagination.PipelinePagination",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Diagnostics Pipeline API",
    "DESCRIPTION": "Diagnostic orders, specimens, processing, critical-value escalation and results review",
    "VERSION": "0.1.0",

    "COMPONENT_SPLIT_REQUEST": True,
    "SORT_OPERATIONS": True,
    "SORT_OPERATION_PARAMETERS": True,
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=10),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=14),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": False,
    "UPDATE_LAST_LOGIN": True,
}

# Development
CORS_ALLOW_ALL_ORIGINS = True
CORS_ALLOW_CREDENTIALS = True

COMMON_IDEMPOTENCY_USE_DB = True

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "standard"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "dx_core": {
            "handlers": ["console"],
            "level": os.getenv("DX_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# ---------------------------------------------------------------------------
# Diagnostics pipeline
# ---------------------------------------------------------------------------
DX_CATALOG = "dx_core.catalog.source.default_catalog"
DX_PAGE_SIZE = int(os.getenv("DX_PAGE_SIZE", "20"))

# "tolerate": failed steps lower confidence; "abort": a failed step aborts the run
DX_PROCESSING_STEP_FAILURE_POLICY = os.getenv("DX_PROCESSING_STEP_FAILURE_POLICY", "tolerate")

# Default allowed deviation of a control from its expected value
DX_QC_TOLERANCE_PERCENT = float(os.getenv("DX_QC_TOLERANCE_PERCENT", "10"))

DX_ESCALATION_RETRY = {
    "base_seconds": 60,
    "factor": 2,
    "max_seconds": 900,
}

DX_DEFAULT_NOTIFICATION_PROTOCOL = {
    "primary_contact": "@ordering-clinician",
    "backup_contact": "on-call-physician",
    "escalation_contact": "lab-medical-director",
    "escalation_procedure": "Notify the laboratory medical director.",
    "channel": "PHONE",
    "max_attempts": 3,
}

DX_PATIENT_RECORD_STORE = "dx_core.integrations.patients.LocalPatientRecordStore"
DX_NOTIFICATION_GATEWAY = "dx_core.alerts.channels.InAppNotificationGateway"
DX_BILLING_GATEWAY = "dx_core.integrations.billing.CatalogBillingGateway"
DX_QUALITY_ASSESSOR = "dx_core.specimens.quality.AcceptanceCriteriaAssessor"
DX_CORRELATION_RULE = "dx_core.processing.checks.ConcordanceCorrelationRule"
DX_CONFIDENCE_SCORER = "dx_core.processing.checks.StepConfidenceScorer"
