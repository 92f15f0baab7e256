"""Notification service for invitation and password emails.

Delivery is fire-and-forget: every failure is logged and swallowed so the
state change that triggered the email never reports failure because of it.
"""

import structlog
from typing import Any, Dict, Optional
import httpx

from realty_access.config import settings

logger = structlog.get_logger()

REQUEST_TIMEOUT_SECONDS = 10.0


class NotificationService:
    """Service for sending templated emails through the notifier HTTP API"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.base_url = (base_url if base_url is not None else settings.NOTIFIER_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.NOTIFIER_API_KEY
        self.enabled = bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _send_template(
        self,
        recipient: str,
        template_name: str,
        variables: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Post a template send request.

        Returns:
            Delivery response, or None if disabled or delivery failed
        """
        if not self.enabled:
            logger.warning(
                "notification_skipped",
                reason="notifier_not_configured",
                recipient=recipient,
                template=template_name,
            )
            return None

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/send",
                    headers=self._headers(),
                    json={
                        "recipient": recipient,
                        "provider": "email",
                        "template_name": template_name,
                        "variables": variables,
                        "metadata": {"from_email": settings.EMAIL_FROM},
                    },
                )
                response.raise_for_status()
                result = response.json()

            logger.info(
                "notification_sent",
                recipient=recipient,
                template=template_name,
                delivery_id=result.get("delivery_id"),
            )
            return result

        except Exception as e:
            logger.error(
                "notification_failed",
                recipient=recipient,
                template=template_name,
                error=str(e),
            )
            return None

    async def send_invite(
        self,
        email: str,
        token: str,
        tenant_name: str,
        role_label: str,
    ) -> Optional[Dict[str, Any]]:
        """Send the invitation link"""
        invite_url = f"{settings.FRONTEND_URL}/invite/accept?token={token}"
        return await self._send_template(
            recipient=email,
            template_name="invitation",
            variables={
                "tenant_name": tenant_name,
                "role": role_label,
                "invite_url": invite_url,
                "expires_in_days": settings.INVITATION_EXPIRY_DAYS,
            },
        )

    async def send_password_reset_notice(self, email: str, new_password: str) -> Optional[Dict[str, Any]]:
        """Tell a member an admin reset their password"""
        return await self._send_template(
            recipient=email,
            template_name="password_reset_by_admin",
            variables={
                "new_password": new_password,
                "login_url": f"{settings.FRONTEND_URL}/login",
            },
        )


# Singleton instance for easy import
notification_service = NotificationService()
