from __future__ import annotations

import logging
from typing import Optional

import httpx

from src.errors import ConfigurationError

logger = logging.getLogger(__name__)

_UPLOAD_TIMEOUT = 60.0


async def upload_replay(
    html: str,
    provider_url: Optional[str],
    *,
    slug: str,
    query: str = "",
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Upload a replay page to the sharing backend and return its share URL."""
    if not provider_url:
        raise ConfigurationError("Share provider is not configured")

    files = {"file": ("index.html", html.encode("utf-8"), "text/html")}
    data = {"type": "html", "slug": slug, "query": query}

    if client is None:
        async with httpx.AsyncClient(timeout=_UPLOAD_TIMEOUT) as owned_client:
            response = await owned_client.post(provider_url, files=files, data=data)
    else:
        response = await client.post(provider_url, files=files, data=data)
    response.raise_for_status()

    share_url = response.json().get("url")
    if not share_url:
        raise ValueError("Share provider response did not include a url")
    logger.info("Replay for %s uploaded to %s", slug, share_url)
    return share_url
