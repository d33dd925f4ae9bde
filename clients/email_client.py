"""
Email gateway client for account confirmation and password recovery mail.

Uses HMAC-SHA256 signature for request authentication. The gateway owns
templating and delivery; this client only hands over the recipient, the
message type and the single-use code.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        hmac_secret: str,
        timeout_seconds: float = 10,
    ):
        """
        Initialize with gateway credentials.

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout_seconds = timeout_seconds

    def sign(self, payload_json: str) -> str:
        """HMAC-SHA256 hex digest of the serialized payload."""
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and send to gateway.

        Raises:
            EmailGatewayError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self.sign(payload_json),
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Email gateway returned invalid JSON: {response.text}")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Email gateway error: {error_msg}")
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_confirmation_code(self, email: str, code: str, app_url: str) -> None:
        """
        Send the registration confirmation link.

        The link points at {app_url}/confirm-email?code=<code>; the front-end
        posts the code to /auth/registration-confirmation.

        Raises:
            EmailGatewayError: On any failure
        """
        self._sign_and_send({
            "type": "registration_confirmation",
            "email": email,
            "code": code,
            "link": f"{app_url}/confirm-email?code={code}",
        })
        logger.info(f"Confirmation email sent to {email}")

    def send_recovery_code(self, email: str, code: str, app_url: str) -> None:
        """
        Send the password recovery link.

        Raises:
            EmailGatewayError: On any failure
        """
        self._sign_and_send({
            "type": "password_recovery",
            "email": email,
            "code": code,
            "link": f"{app_url}/password-recovery?recoveryCode={code}",
        })
        logger.info(f"Password recovery email sent to {email}")
