from django.conf import settings
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path(
        "api/reservations/",
        include(("reservations.urls", "reservations"), namespace="reservations"),
    ),
    path("api/payments/", include("payments.urls")),
]

if settings.ENABLE_DJANGO_ADMIN:
    urlpatterns.insert(0, path("admin/", admin.site.urls))
