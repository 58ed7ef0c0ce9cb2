from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from openalex_cache.config.models import FetchSettings

logger = logging.getLogger(__name__)

# Example URLs in docs and fixtures carry this address. The API wants a real contact.
CONTACT_EMAIL_PLACEHOLDER = "you@example.com"
_PLACEHOLDER_FORMS = (
    f"mailto={CONTACT_EMAIL_PLACEHOLDER}",
    f"mailto={quote(CONTACT_EMAIL_PLACEHOLDER, safe='')}",
)


class FetchError(RuntimeError):
    def __init__(self, url: str, status: int, message: str = ""):
        super().__init__(f"Upstream request failed. url={url} status={status} message={message}")
        self.url = url
        self.status = status


async def read_git_user_email() -> str:
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            "config",
            "user.email",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await process.communicate()
    except OSError as e:
        logger.warning("Could not run git to look up a contact email. error=%s", e)
        return ""
    if process.returncode != 0:
        return ""
    return stdout.decode("utf-8", errors="replace").strip()


class ApiFetcher:
    def __init__(self, settings: FetchSettings):
        self._settings = settings
        self._session: Optional[aiohttp.ClientSession] = None
        self._contact_email: Optional[str] = None

    async def __aenter__(self) -> ApiFetcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._session is not None:
            return
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        self._session = aiohttp.ClientSession(
            timeout=timeout,
            headers={"User-Agent": self._settings.user_agent, "Accept": "application/json"},
        )

    async def stop(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch_json(self, url: str) -> Any:
        request_url = await self.prepare_url(url)
        should_close = False
        if self._session is None:
            await self.start()
            should_close = True

        try:
            assert self._session is not None
            logger.debug("Fetching from upstream. url=%s", request_url)
            async with self._session.get(request_url) as response:
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    raise FetchError(url=url, status=response.status, message=body[:200])
                return await response.json(content_type=None)
        finally:
            if should_close:
                await self.stop()

    async def prepare_url(self, url: str) -> str:
        """Swap the placeholder contact address for a real one, when one can be found."""
        form = next((candidate for candidate in _PLACEHOLDER_FORMS if candidate in url), None)
        if form is None:
            return url
        email = await self._resolve_contact_email()
        if not email:
            logger.warning("No contact email available, keeping placeholder. url=%s", url)
            return url
        return url.replace(form, f"mailto={quote(email, safe='@')}")

    async def _resolve_contact_email(self) -> str:
        if self._contact_email is None:
            email = self._settings.contact_email.strip()
            if not email:
                email = await read_git_user_email()
            self._contact_email = email
        return self._contact_email
