"""Notification DRF serializers."""

from __future__ import annotations

from rest_framework import serializers

from modules.notifications.models import DevicePlatform, DeviceToken, Notification


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = [
            "id",
            "type",
            "title",
            "message",
            "read",
            "metadata",
            "created_at",
        ]
        read_only_fields = fields


class DeviceTokenRegisterSerializer(serializers.Serializer):
    token = serializers.CharField(max_length=255)
    platform = serializers.ChoiceField(
        choices=DevicePlatform.choices, default=DevicePlatform.ANDROID
    )

    def validate_token(self, value: str) -> str:
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Token cannot be blank.")
        return value


class DeviceTokenSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeviceToken
        fields = ["id", "platform", "is_active", "last_used_at", "created_at"]
        read_only_fields = fields
