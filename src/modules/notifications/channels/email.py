"""Email channel.

Renders one message per event from Django templates and sends it
separately to the customer and to the store's admin address, so a bad
customer address never stops the admin copy (and vice versa).
"""

from __future__ import annotations

from email.utils import make_msgid
from typing import Any, Dict, List, Tuple

import structlog
from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.template.loader import render_to_string

from modules.notifications.channels.base import (
    ChannelResult,
    DeliveryStatus,
    NotificationChannel,
    compose_message,
)
from modules.orders.dtos import OrderEventDTO

logger = structlog.get_logger(__name__)

HTML_TEMPLATE = "notifications/email/order_event.html"
TEXT_TEMPLATE = "notifications/email/order_event.txt"


class EmailChannel(NotificationChannel):
    name = "email"

    def deliver(self, event: OrderEventDTO) -> ChannelResult:
        title, summary = compose_message(event)
        subject = f"{title} - #{event.order_number}"
        context = {
            "title": title,
            "summary": summary,
            "event": event,
            "order": event.snapshot,
            "shipping": event.snapshot.shipping_details,
        }
        text_body = render_to_string(TEXT_TEMPLATE, context)
        html_body = render_to_string(HTML_TEMPLATE, context)

        recipients: List[Tuple[str, str]] = [
            ("customer", event.snapshot.customer_email),
            ("admin", settings.ADMIN_NOTIFICATION_EMAIL),
        ]
        connection = get_connection(timeout=settings.EMAIL_TIMEOUT)
        results: Dict[str, Dict[str, Any]] = {}
        for role, address in recipients:
            if not address:
                results[role] = {"success": False, "skipped": True}
                continue
            message = EmailMultiAlternatives(
                subject=subject,
                body=text_body,
                from_email=settings.DEFAULT_FROM_EMAIL,
                to=[address],
                connection=connection,
                headers={"Message-ID": make_msgid()},
            )
            message.attach_alternative(html_body, "text/html")
            try:
                sent = message.send()
            except Exception as exc:
                logger.warning(
                    "notification.email_failed",
                    recipient_role=role,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
                results[role] = {
                    "success": False,
                    "error": str(exc) or exc.__class__.__name__,
                }
                continue
            results[role] = {
                "success": bool(sent),
                "message_id": message.extra_headers["Message-ID"],
            }

        attempted = [r for r in results.values() if not r.get("skipped")]
        if not attempted:
            status = DeliveryStatus.SKIPPED
        elif any(r["success"] for r in attempted):
            status = DeliveryStatus.SENT
        else:
            status = DeliveryStatus.FAILED

        logger.info(
            "notification.email_sent",
            status=status.value,
            customer=results["customer"]["success"],
            admin=results["admin"]["success"],
        )
        return ChannelResult(
            channel=self.name,
            status=status,
            detail=results,
            error="no recipient accepted the message"
            if status is DeliveryStatus.FAILED
            else None,
        )
