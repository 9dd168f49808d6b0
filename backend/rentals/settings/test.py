import os

from .base import *

DEBUG = True
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key")

# SQLite for CI speed/simplicity if DATABASE_URL absent
if not os.environ.get("DATABASE_URL"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "test.db",
        }
    }

ENABLE_DJANGO_ADMIN = True
STRIPE_SECRET_KEY = "sk_test_dummy"
STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"
PAYMENT_SUCCESS_URL = "http://testserver/reservations/payment-success"
PAYMENT_CANCEL_URL = "http://testserver/reservations/payment-canceled"
RESERVATION_REFUND_WINDOW_DAYS = 7
RESERVATION_COMMAND_MAX_RETRIES = 3
