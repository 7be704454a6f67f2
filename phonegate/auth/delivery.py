# auth/delivery.py
"""
Code delivery gateways: how an OTP reaches a phone.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    error: Optional[str] = None


class CodeDeliveryGateway(ABC):
    """Sends a short numeric code to a phone number."""

    @abstractmethod
    async def send(self, phone: str, code: str) -> DeliveryResult:
        ...

    async def close(self) -> None:
        pass


class ConsoleDeliveryGateway(CodeDeliveryGateway):
    """Development gateway that writes the code to the log instead of sending it."""

    async def send(self, phone: str, code: str) -> DeliveryResult:
        logger.info(f"OTP for {phone}: {code}")
        return DeliveryResult(success=True)


class HttpSmsGateway(CodeDeliveryGateway):
    """Posts the code to an SMS provider's HTTP API."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        sender_id: str = "PHNGTE",
        timeout: float = 10.0,
        expires_in_seconds: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.sender_id = sender_id
        self.expires_in_seconds = expires_in_seconds
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    def message(self, code: str) -> str:
        text = f"Your verification code is {code}."
        if self.expires_in_seconds:
            minutes, seconds = divmod(int(self.expires_in_seconds), 60)
            if seconds:
                span = f"{int(self.expires_in_seconds)} seconds"
            else:
                span = f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
            text += f" It expires in {span}."
        return text

    async def send(self, phone: str, code: str) -> DeliveryResult:
        payload = {"to": phone, "sender": self.sender_id, "message": self.message(code)}
        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"SMS provider rejected message to {phone}: {e.response.status_code}")
            return DeliveryResult(success=False, error=f"provider returned {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"SMS provider unreachable: {e}")
            return DeliveryResult(success=False, error=str(e))
        return DeliveryResult(success=True)

    async def close(self) -> None:
        await self._client.aclose()
