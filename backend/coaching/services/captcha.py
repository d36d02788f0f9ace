"""hCaptcha server-side verification."""
import logging
from typing import Optional

import httpx

from coaching.errors import ExternalServiceError, InvalidInput

logger = logging.getLogger(__name__)

HCAPTCHA_VERIFY_URL = "https://api.hcaptcha.com/siteverify"


class CaptchaVerifier:
    """Checks client CAPTCHA tokens. Without a secret every check passes."""

    def __init__(
        self,
        secret: Optional[str],
        client: Optional[httpx.Client] = None,
        verify_url: str = HCAPTCHA_VERIFY_URL,
        timeout: float = 10.0,
    ):
        self.secret = secret
        self.client = client  # injected clients are owned by the caller
        self.verify_url = verify_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> None:
        if not self.enabled:
            logger.debug("hCaptcha secret not set, skipping verification")
            return

        if not token:
            raise InvalidInput("CAPTCHA verification failed")

        data = {"secret": self.secret, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            if self.client is not None:
                result = self._post(self.client, data)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    result = self._post(client, data)
        except httpx.HTTPError as e:
            logger.error(f"hCaptcha verification request failed: {e}")
            raise ExternalServiceError("CAPTCHA verification unavailable") from e

        if not result.get("success"):
            logger.warning(f"hCaptcha rejected token: {result.get('error-codes')}")
            raise InvalidInput("CAPTCHA verification failed")

    def _post(self, client: httpx.Client, data: dict) -> dict:
        response = client.post(self.verify_url, data=data)
        response.raise_for_status()
        return response.json()
