"""
Django settings for the acquiring service.

This is the single settings file for all environments. Configuration is driven
by environment variables using django-environ, following the 12-factor app
methodology.

Environment files:
    - .env.development: Development settings (DEBUG=True, relaxed security)
    - .env.production: Production settings (DEBUG=False, hardened security)

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/topics/settings/

For the full list of settings and their values, see:
https://docs.djangoproject.com/en/5.2/ref/settings/
"""

import os
from pathlib import Path

import environ

# =============================================================================
# Path Configuration
# =============================================================================
# Build paths inside the project: BASE_DIR / 'subdir'
BASE_DIR = Path(__file__).resolve().parent.parent

# =============================================================================
# Environment Configuration
# =============================================================================
# Initialize django-environ
env = environ.Env(
    # Set default values and casting for common settings
    DEBUG=(bool, False),  # Default to False for safety
    ALLOWED_HOSTS=(list, []),
    LOG_LEVEL=(str, "INFO"),
)

# Read environment file based on DJANGO_ENV or default to development
# Note: In Docker, env vars are passed directly; .env files are for local dev
env_file = os.environ.get("ENV_FILE", BASE_DIR.parent / ".env.development")
if Path(env_file).exists():
    environ.Env.read_env(env_file)

# =============================================================================
# Core Settings
# =============================================================================
# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env("SECRET_KEY")

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env("DEBUG")

ALLOWED_HOSTS = env("ALLOWED_HOSTS")

# =============================================================================
# Application Definition
# =============================================================================
INSTALLED_APPS = [
    # Django core apps
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third-party apps
    "django_celery_beat",
    # Local apps
    "core",
    "acquiring",
]

MIDDLEWARE = [
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
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

# =============================================================================
# Database Configuration
# =============================================================================
# https://docs.djangoproject.com/en/5.2/ref/settings/#databases
# PostgreSQL in every deployed environment: the ledger relies on
# SELECT ... FOR UPDATE row locks
DATABASES = {
    "default": env.db(
        "DATABASE_URL",
        default="postgres://postgres:postgres@db:5432/acquiring_dev",
    ),
}

if DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
    DATABASES["default"]["OPTIONS"] = {
        "connect_timeout": 10,
    }

# =============================================================================
# Cache Configuration
# =============================================================================
# https://docs.djangoproject.com/en/5.2/topics/cache/
# Holds circuit breaker state shared by all workers
CACHES = {
    "default": env.cache("CACHE_URL", default="redis://redis:6379/0"),
}

if CACHES["default"]["BACKEND"] == "django_redis.cache.RedisCache":
    CACHES["default"].setdefault("OPTIONS", {}).update(
        {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
            # Gracefully handle Redis connection failures
            "IGNORE_EXCEPTIONS": True,
        }
    )

# Password validation
# https://docs.djangoproject.com/en/5.2/ref/settings/#auth-password-validators
AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"
    },
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# =============================================================================
# Celery Configuration
# =============================================================================
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://redis:6379/1")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60  # 30 minutes
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"

# =============================================================================
# Card Data Encryption
# =============================================================================
# Fernet keys, newest first. Add a new key at the front to rotate; keep old
# keys until every token sealed with them has been retired.
# Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
CARD_ENCRYPTION_KEYS = env.list("CARD_ENCRYPTION_KEYS", default=[])

# =============================================================================
# Acquiring Configuration
# =============================================================================
# Risk scorer (dotted path to a class implementing score(transaction, signals))
ACQUIRING_RISK_SCORER = env(
    "ACQUIRING_RISK_SCORER",
    default="acquiring.risk.scorer.RuleBasedRiskScorer",
)

# Scores strictly above this go to manual review
ACQUIRING_RISK_HIGH_THRESHOLD = env.int("ACQUIRING_RISK_HIGH_THRESHOLD", default=70)

# Rule inputs for the rule-based scorer
ACQUIRING_RISK_LARGE_AMOUNT_CENTS = env.int(
    "ACQUIRING_RISK_LARGE_AMOUNT_CENTS", default=500_000
)
ACQUIRING_RISK_VELOCITY_WINDOW_MINUTES = env.int(
    "ACQUIRING_RISK_VELOCITY_WINDOW_MINUTES", default=60
)
ACQUIRING_RISK_VELOCITY_LIMIT = env.int("ACQUIRING_RISK_VELOCITY_LIMIT", default=5)
ACQUIRING_RISK_BLOCKED_IPS = env.list("ACQUIRING_RISK_BLOCKED_IPS", default=[])
ACQUIRING_RISK_BLOCKED_BINS = env.list("ACQUIRING_RISK_BLOCKED_BINS", default=[])
ACQUIRING_RISK_BLOCKED_COUNTRIES = env.list(
    "ACQUIRING_RISK_BLOCKED_COUNTRIES", default=[]
)
ACQUIRING_RISK_BLOCKED_EMAIL_DOMAINS = env.list(
    "ACQUIRING_RISK_BLOCKED_EMAIL_DOMAINS", default=[]
)

# Circuit breaker around the risk scorer
ACQUIRING_RISK_CIRCUIT_FAILURE_THRESHOLD = env.int(
    "ACQUIRING_RISK_CIRCUIT_FAILURE_THRESHOLD", default=5
)
ACQUIRING_RISK_CIRCUIT_RECOVERY_TIMEOUT = env.int(
    "ACQUIRING_RISK_CIRCUIT_RECOVERY_TIMEOUT", default=60
)

# Step-up verification
ACQUIRING_DEFAULT_CHALLENGE_TYPE = env("ACQUIRING_DEFAULT_CHALLENGE_TYPE", default="sms")
ACQUIRING_VERIFICATION_MAX_ATTEMPTS = env.int(
    "ACQUIRING_VERIFICATION_MAX_ATTEMPTS", default=3
)
ACQUIRING_SMS_RESEND_LIMIT = env.int("ACQUIRING_SMS_RESEND_LIMIT", default=3)
ACQUIRING_SMS_RESEND_COOLDOWN_SECONDS = env.int(
    "ACQUIRING_SMS_RESEND_COOLDOWN_SECONDS", default=60
)

# Abandoned PENDING_SUBMISSION / AWAITING_3D_* transactions fail after this
ACQUIRING_INACTIVITY_TIMEOUT_MINUTES = env.int(
    "ACQUIRING_INACTIVITY_TIMEOUT_MINUTES", default=30
)

# Card transactions settle from pending to available after this delay
ACQUIRING_AUTO_SETTLEMENT_DELAY_HOURS = env.int(
    "ACQUIRING_AUTO_SETTLEMENT_DELAY_HOURS", default=24
)

# Withdrawal fees: flat + basis points per method, per-asset overrides
ACQUIRING_WITHDRAWAL_FEES = {
    "crypto": {
        "flat_cents": env.int("ACQUIRING_CRYPTO_WITHDRAWAL_FLAT_FEE_CENTS", default=1500),
        "basis_points": env.int("ACQUIRING_CRYPTO_WITHDRAWAL_FEE_BPS", default=0),
    },
    "bank_transfer": {
        "flat_cents": env.int("ACQUIRING_BANK_WITHDRAWAL_FLAT_FEE_CENTS", default=0),
        "basis_points": env.int("ACQUIRING_BANK_WITHDRAWAL_FEE_BPS", default=0),
    },
}
ACQUIRING_WITHDRAWAL_ASSET_FEES = env.json("ACQUIRING_WITHDRAWAL_ASSET_FEES", default={})

# Block explorer templates by asset ({tx_hash} is substituted)
ACQUIRING_EXPLORER_URLS = {
    "usdt_trc20": "https://tronscan.org/#/transaction/{tx_hash}",
    "usdt_erc20": "https://etherscan.io/tx/{tx_hash}",
    "eth": "https://etherscan.io/tx/{tx_hash}",
    "btc": "https://blockchain.info/tx/{tx_hash}",
}

# =============================================================================
# Internationalization
# =============================================================================
# https://docs.djangoproject.com/en/5.2/topics/i18n/
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# =============================================================================
# Static Files (admin)
# =============================================================================
STATIC_URL = env("STATIC_URL", default="/static/")
STATIC_ROOT = BASE_DIR / "staticfiles"

# =============================================================================
# Default Primary Key Field Type
# =============================================================================
# https://docs.djangoproject.com/en/5.2/ref/settings/#default-auto-field
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL = env("LOG_LEVEL")

# Log file name determined by service (web, celery-worker, celery-beat)
LOG_FILE_NAME = env("LOG_FILE_NAME", default="django.log")
LOG_DIR = Path(env("LOG_DIR", default=str(BASE_DIR / "logs")))

# Ensure log directory exists (handles local development without Docker)
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "file": {
            # Detailed format for persistent logs with timestamp, level, logger name, and location
            "format": "[{asctime}] {levelname} {name} {module}:{lineno} - {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
        "file": {
            # Rotating file handler prevents unbounded disk usage
            # Max 10MB per file, keeps 5 backups (60MB total per log type)
            "level": "DEBUG",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": LOG_DIR / LOG_FILE_NAME,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "file",
            "encoding": "utf-8",
        },
    },
    "root": {
        "handlers": ["console", "file"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "celery": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "acquiring": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

# =============================================================================
# Security Settings (Production Only)
# =============================================================================
# These settings are enforced only when DEBUG=False
if not DEBUG:
    # HTTPS/SSL settings
    SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=True)
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

    # Cookie security
    SESSION_COOKIE_SECURE = env.bool("SESSION_COOKIE_SECURE", default=True)
    CSRF_COOKIE_SECURE = env.bool("CSRF_COOKIE_SECURE", default=True)

    # HSTS (HTTP Strict Transport Security)
    SECURE_HSTS_SECONDS = env.int("SECURE_HSTS_SECONDS", default=31536000)  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = env.bool(
        "SECURE_HSTS_INCLUDE_SUBDOMAINS", default=True
    )
    SECURE_HSTS_PRELOAD = env.bool("SECURE_HSTS_PRELOAD", default=True)

    # Additional security headers
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
