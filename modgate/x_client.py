import logging
from typing import Optional

import httpx

from modgate.errors import PublishError

logger = logging.getLogger(__name__)

X_API_BASE_URL = "https://api.twitter.com/2"


class XApiClient:
    """Minimal client for publishing text posts through the X v2 API."""

    def __init__(
        self,
        bearer_token: str,
        base_url: str = X_API_BASE_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.bearer_token = bearer_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http_client = http_client

    async def post(self, text: str, reply_to: Optional[str] = None, quote_tweet: Optional[str] = None) -> str:
        """
        Publish a post and return its id.

        Raises:
            PublishError: on transport failure, non-2xx status or a reply without an id.
        """
        payload = {"text": text}
        if reply_to:
            payload["reply"] = {"in_reply_to_tweet_id": reply_to}
        if quote_tweet:
            payload["quote_tweet_id"] = quote_tweet

        client = self.http_client
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(
                f"{self.base_url}/tweets",
                json=payload,
                headers={"Authorization": f"Bearer {self.bearer_token}"},
            )
        except httpx.HTTPError as e:
            raise PublishError(f"X API request failed: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

        if not response.is_success:
            logger.error(f"[X] Post rejected: {response.status_code} {response.text[:200]}")
            raise PublishError(f"X API error: {response.status_code}", status_code=response.status_code)

        try:
            post_id = response.json()["data"]["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise PublishError("X API reply did not include a post id", status_code=response.status_code) from e

        logger.info(f"[X] Published post {post_id}")
        return str(post_id)
