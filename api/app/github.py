import asyncio
import logging
import os
import re
import time
from typing import Any, Dict, Optional

import httpx

from .config import get_settings

logger = logging.getLogger("starflow.github")
GITHUB_API_BASE_URL = os.getenv("GITHUB_API_BASE_URL", "https://api.github.com").rstrip("/")


def extract_readme_summary(content: str, max_length: int = 500) -> str:
    """Reduce a README to its leading prose.

    Drops HTML tags and comments, images, link targets, code, then collapses
    whitespace and cuts to ``max_length`` characters.
    """
    if not content:
        return ""
    text = re.sub(r"<!--[\s\S]*?-->", "", content)
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"!\[[^\]]*\]\([^)]+\)", "", text)
    text = re.sub(r"\[([^\]]*)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"```[\s\S]*?```", "", text)
    text = re.sub(r"`[^`]+`", "", text)

    lines = []
    for line in text.splitlines():
        stripped = line.strip().lstrip("#").strip()
        if not stripped:
            continue
        if re.fullmatch(r"[-=*_|:\s]+", stripped):
            continue
        if re.fullmatch(r"https?://\S+", stripped):
            continue
        lines.append(stripped)
    summary = re.sub(r"\s+", " ", " ".join(lines)).strip()
    if len(summary) <= max_length:
        return summary
    return summary[:max_length].rstrip() + "..."


def _default_headers() -> Dict[str, str]:
    settings = get_settings()
    headers = {
        "Accept": "application/vnd.github.raw",
        "User-Agent": "Starflow",
    }
    if settings.github_token:
        headers["Authorization"] = f"Bearer {settings.github_token}"
    return headers


async def _request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Dict[str, str],
    params: Optional[Dict[str, Any]] = None,
    timeout: int = 30,
    retries: int = 2,
) -> httpx.Response:
    for attempt in range(retries + 1):
        try:
            response = await client.request(
                method,
                url,
                headers=headers,
                params=params,
                timeout=timeout,
            )
        except httpx.RequestError as exc:
            if attempt >= retries:
                raise exc
            wait = 2 ** attempt
            logger.warning(
                "GitHub request error on attempt %s/%s: %s. Retrying in %ss",
                attempt + 1,
                retries + 1,
                exc,
                wait,
            )
            await asyncio.sleep(wait)
            continue

        rate_limited = (
            response.status_code == 403
            and response.headers.get("X-RateLimit-Remaining") == "0"
        )
        retryable = response.status_code in (429, 500, 502, 503, 504) or rate_limited
        if not retryable or attempt >= retries:
            return response

        wait = float(2 ** attempt)
        reset_header = response.headers.get("X-RateLimit-Reset")
        if rate_limited and reset_header:
            try:
                wait = min(60.0, max(1.0, float(int(reset_header)) - time.time()))
            except (TypeError, ValueError):
                pass
        logger.warning(
            "GitHub request status %s on attempt %s/%s. Retrying in %.1fs",
            response.status_code,
            attempt + 1,
            retries + 1,
            wait,
        )
        await asyncio.sleep(wait)

    return response  # pragma: no cover


class GitHubClient:
    def __init__(self, client: httpx.AsyncClient, semaphore: asyncio.Semaphore) -> None:
        self._client = client
        self._semaphore = semaphore

    async def fetch_readme(self, full_name: str) -> str:
        url = f"{GITHUB_API_BASE_URL}/repos/{full_name}/readme"
        async with self._semaphore:
            response = await _request_with_retry(self._client, "GET", url, headers=_default_headers(), timeout=30)
        if response.status_code == 404:
            return ""
        if response.status_code == 401:
            raise ValueError("GitHub authentication failed. Check GITHUB_TOKEN.")
        response.raise_for_status()
        return response.text.strip()

    async def fetch_readme_summary(self, full_name: str, max_length: int = 500) -> str:
        return extract_readme_summary(await self.fetch_readme(full_name), max_length=max_length)
