from __future__ import annotations

import logging

from appointment_booking.api_client import ApiClient
from appointment_booking.errors import ApiError
from appointment_booking.models import Provider

logger = logging.getLogger(__name__)


class ProviderDirectory:
    """Paginated provider list; later pages are appended."""

    def __init__(self, api: ApiClient, page_size: int = 20) -> None:
        self._api = api
        self.page_size = page_size
        self.providers: list[Provider] = []
        self.has_more = False
        self.loading = False
        self.error: str | None = None
        self._offset = 0
        self._search: str | None = None
        self._location: str | None = None

    def find(self, provider_id: str | int | None) -> Provider | None:
        if provider_id is None:
            return None
        wanted = str(provider_id)
        return next((p for p in self.providers if p.id == wanted), None)

    async def load(self, search: str | None = None, location: str | None = None) -> list[Provider]:
        """Load the first page for a (possibly new) search, replacing the list."""
        self._search, self._location = search, location
        return await self._fetch(offset=0, replace=True)

    async def load_more(self) -> list[Provider]:
        if not self.has_more or self.loading:
            return self.providers
        return await self._fetch(offset=self._offset, replace=False)

    async def _fetch(self, offset: int, replace: bool) -> list[Provider]:
        self.loading = True
        self.error = None
        try:
            page = await self._api.list_doctors(
                search=self._search, location=self._location, offset=offset, limit=self.page_size
            )
        except ApiError as exc:
            logger.warning("Loading providers failed: %s", exc.message)
            self.error = exc.message or "Failed to load doctors"
            if replace:
                self.providers = []
                self._offset = 0
                self.has_more = False
            return self.providers
        finally:
            self.loading = False

        if replace:
            self.providers = list(page.doctors)
        else:
            known = {p.id for p in self.providers}
            self.providers.extend(p for p in page.doctors if p.id not in known)
        self._offset = offset + len(page.doctors)
        self.has_more = page.has_more
        return self.providers
