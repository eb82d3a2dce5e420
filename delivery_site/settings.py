"""
Django settings for the delivery tracking demo.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "delivery-tracking-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"
ALLOWED_HOSTS = [host for host in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if host]

INSTALLED_APPS = [
    "deliveries",
]

MIDDLEWARE = [
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "delivery_site.urls"

DATABASES = {}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "delivery-tracking",
    }
}

USE_TZ = True
TIME_ZONE = "UTC"

DELIVERY_TRACKING = {
    "arcgis_client_id": os.getenv("ARCGIS_CLIENT_ID", "").strip(),
    "arcgis_client_secret": os.getenv("ARCGIS_CLIENT_SECRET", "").strip(),
    "delivery_service_url": os.getenv("DELIVERY_SERVICE_URL", "").strip(),
    "simulation_service_url": os.getenv("SIMULATION_SERVICE_URL", "").strip(),
    "pubnub_publish_key": os.getenv("PUBNUB_PUBLISH_KEY", "").strip(),
    "pubnub_subscribe_key": os.getenv("PUBNUB_SUBSCRIBE_KEY", "").strip(),
    "timeout_seconds": int(os.getenv("DELIVERY_TRACKING_TIMEOUT", "10")),
    "zone_strategy": os.getenv("DELIVERY_ZONE_STRATEGY", "drive_time"),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "deliveries": {
            "handlers": ["console"],
            "level": os.getenv("DELIVERY_TRACKING_LOG_LEVEL", "INFO"),
        },
    },
}
