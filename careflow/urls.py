"""
URL configuration for the careflow project.

Only the Django admin is routed over HTTP; patient flow operations are
invoked through :mod:`patientflow.services` and notifications are
delivered over the websocket routes in :mod:`careflow.asgi`.
"""
from django.contrib import admin
from django.urls import path

urlpatterns = [
    path('admin/', admin.site.urls),
]
