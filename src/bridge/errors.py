"""Domain-specific exceptions for call bridging.

These exceptions are safe to import from API layers without pulling in the media stack.
"""

from __future__ import annotations


class BridgeError(Exception):
    status_code: int = 500
    default_detail: str = "Call bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ConfigurationError(BridgeError):
    default_detail = "Bridge is not configured."


class WebhookVerificationError(BridgeError):
    status_code = 403
    default_detail = "Webhook verification failed."


class InvalidWebhookPayloadError(BridgeError):
    default_detail = "Webhook payload does not describe a call event."


class MediaSetupError(BridgeError):
    default_detail = "Media negotiation failed."


class ControlPlaneError(BridgeError):
    default_detail = "Control-plane action failed."
