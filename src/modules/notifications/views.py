"""Notification inbox and device-token API views."""

from __future__ import annotations

import structlog
from django.db.models import F
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.notifications.models import DeviceToken, Notification
from modules.notifications.serializers import (
    DeviceTokenRegisterSerializer,
    DeviceTokenSerializer,
    NotificationSerializer,
)

logger = structlog.get_logger(__name__)


class NotificationViewSet(GenericViewSet):
    """Inbox of the authenticated user.

    Staff see admin broadcasts plus notifications addressed to them;
    everyone else only their own.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = NotificationSerializer
    pagination_class = StandardResultsSetPagination
    lookup_value_regex = "[0-9a-fA-F-]{32,36}"

    def get_queryset(self):
        return Notification.objects.visible_to(self.request.user)

    def list(self, request: Request) -> Response:
        """GET /api/v1/notifications/

        ``?read=false`` narrows to unread notifications.
        """
        queryset = self.get_queryset()
        read = request.query_params.get("read")
        if read is not None:
            queryset = queryset.filter(read=read.lower() in {"1", "true", "yes"})

        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        response = self.get_paginated_response(serializer.data)
        response.data["unread_count"] = self.get_queryset().filter(read=False).count()
        return response

    @action(detail=True, methods=["post"])
    def read(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/notifications/{pk}/read/"""
        updated = (
            self.get_queryset()
            .filter(pk=pk)
            .update(read=True, updated_at=timezone.now())
        )
        if not updated:
            return Response(
                {"detail": "Notification not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response({"read": True})

    @action(detail=False, methods=["post"], url_path="read-all")
    def read_all(self, request: Request) -> Response:
        """POST /api/v1/notifications/read-all/"""
        updated = (
            self.get_queryset()
            .filter(read=False)
            .update(read=True, updated_at=timezone.now())
        )
        logger.info("notification.read_all", user_id=request.user.pk, updated=updated)
        return Response({"updated": updated})

    @action(detail=False, methods=["delete"], url_path="clear-read")
    def clear_read(self, request: Request) -> Response:
        """DELETE /api/v1/notifications/clear-read/"""
        deleted, _ = self.get_queryset().filter(read=True).delete()
        logger.info("notification.cleared", user_id=request.user.pk, deleted=deleted)
        return Response({"deleted": deleted})

    def destroy(self, request: Request, pk: str | None = None) -> Response:
        """DELETE /api/v1/notifications/{pk}/"""
        deleted, _ = self.get_queryset().filter(pk=pk).delete()
        if not deleted:
            return Response(
                {"detail": "Notification not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        logger.info("notification.deleted", user_id=request.user.pk, notification_id=pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class DeviceTokenViewSet(GenericViewSet):
    """Push token registration for the authenticated user's devices."""

    permission_classes = [IsAuthenticated]
    lookup_field = "token"
    lookup_value_regex = "[^/]+"

    def list(self, request: Request) -> Response:
        """GET /api/v1/device-tokens/

        The caller's own devices, most recently used first.  Inactive ones
        are included with ``?include_inactive=true``.  Token values are
        never echoed back.
        """
        queryset = DeviceToken.objects.filter(owner=request.user).order_by(
            F("last_used_at").desc(nulls_last=True), "-created_at"
        )
        include_inactive = request.query_params.get("include_inactive", "")
        if include_inactive.lower() not in {"1", "true", "yes"}:
            queryset = queryset.filter(is_active=True)
        data = DeviceTokenSerializer(queryset, many=True).data
        return Response({"count": len(data), "results": data})

    def create(self, request: Request) -> Response:
        """POST /api/v1/device-tokens/

        Registers a token, or reactivates and re-owns an existing one.
        """
        serializer = DeviceTokenRegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        device, created = DeviceToken.objects.register(
            owner=request.user,
            token=serializer.validated_data["token"],
            platform=serializer.validated_data["platform"],
        )
        return Response(
            DeviceTokenSerializer(device).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def destroy(self, request: Request, token: str | None = None) -> Response:
        """DELETE /api/v1/device-tokens/{token}/"""
        if not DeviceToken.objects.filter(token=token, owner=request.user).exists():
            return Response(
                {"detail": "Device token not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        DeviceToken.objects.deactivate([token])
        return Response(status=status.HTTP_204_NO_CONTENT)
