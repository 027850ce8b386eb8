import asyncio
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from .config import Settings
from .errors import GatewayTimeout, InternalError, UpstreamAuthError, UpstreamThrottled
from .models import UpstreamChatReply, UpstreamChatRequest, UpstreamMessage

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I can't answer right now."


class ChatbaseClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = settings.CHATBASE_API_URL
        self.bot_id = settings.CHATBASE_BOT_ID
        self.temperature = settings.CHATBASE_TEMPERATURE
        self.timeout = settings.UPSTREAM_TIMEOUT_SECONDS
        self.http = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(self.timeout),
            headers={
                "Authorization": f"Bearer {settings.CHATBASE_API_KEY.get_secret_value()}",
                "Content-Type": "application/json",
            },
        )

    def build_payload(self, message: str) -> dict:
        """Wrap a single user message in the upstream request body"""
        body = UpstreamChatRequest(
            messages=[UpstreamMessage(role="user", content=message)],
            chatbotId=self.bot_id,
            stream=False,
            temperature=self.temperature,
        )
        return body.model_dump()

    async def send_message(self, message: str) -> str:
        """Forward a message upstream and return the reply text.

        Raises GatewayTimeout, UpstreamThrottled, UpstreamAuthError or
        InternalError; one attempt only.
        """
        try:
            response = await asyncio.wait_for(
                self.http.post(self.api_url, json=self.build_payload(message)),
                timeout=self.timeout,
            )
            response.raise_for_status()
            reply = UpstreamChatReply.model_validate(response.json())
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.error("Chatbase API Error: timed out after %ss (%r)", self.timeout, e)
            raise GatewayTimeout() from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Chatbase API Error: status %s: %s", status, e.response.text)
            if status == 429:
                raise UpstreamThrottled() from e
            if status == 401:
                raise UpstreamAuthError() from e
            raise InternalError() from e
        except httpx.HTTPError as e:
            logger.error("Chatbase API Error: %s", e)
            raise InternalError() from e
        except (ValueError, ValidationError) as e:
            # Non-JSON body, or JSON that is not an object with a string "text"
            logger.error("Chatbase API Error: malformed reply: %s", e)
            raise InternalError() from e

        return reply.text or FALLBACK_REPLY

    async def aclose(self):
        await self.http.aclose()
