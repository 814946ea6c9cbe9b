"""Notification URL configuration."""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.notifications.views import DeviceTokenViewSet, NotificationViewSet

router = DefaultRouter(trailing_slash=True)
router.register("notifications", NotificationViewSet, basename="notification")
router.register("device-tokens", DeviceTokenViewSet, basename="device-token")

urlpatterns = router.urls
