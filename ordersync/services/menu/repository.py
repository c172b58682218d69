"""
Menu Repository

Keeps the published menu in the key-value store and only re-downloads it
when the cheap metadata document changes.

    menu_rev        SHA-256 of the metadata JSON (7 days)
    menu_body_json  {revision, lastUpdated, menu}  (menu_body_ttl_seconds)

Cache status reported with every snapshot:
    hit-fresh     cached body matches the current revision
    hit-stale     upstream failed, serving the last cached body
    miss-network  body fetched from upstream

Author: Your Name
Version: 2.0.0
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ordersync.core.config import Settings, get_settings
from ordersync.services.kv.base import BaseKeyValueStore
from ordersync.services.menu.index import MenuIndex, get_or_build_index
from ordersync.services.toast.base import BaseToastApi
from ordersync.services.toast.errors import UpstreamError

logger = logging.getLogger(__name__)

MENU_BODY_KEY = "menu_body_json"
MENU_REV_KEY = "menu_rev"
DINING_OPTIONS_KEY = "dining_options_json"
MENU_REV_TTL_SECONDS = 7 * 24 * 60 * 60
DINING_OPTIONS_TTL_SECONDS = 60 * 60


def menu_revision(metadata: Any) -> str:
    """Stable fingerprint of the metadata document."""
    encoded = json.dumps(metadata, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass
class MenuSnapshot:
    """
    A menu document plus where it came from.

    Attributes:
        document: Published menus document
        revision: Metadata fingerprint it belongs to
        updated_at: Upstream ``lastUpdated`` value
        cache_status: hit-fresh, hit-stale or miss-network
    """
    document: dict[str, Any]
    revision: Optional[str]
    updated_at: Optional[str]
    cache_status: str

    @property
    def cache_hit(self) -> bool:
        return self.cache_status.startswith("hit")

    @property
    def index(self) -> MenuIndex:
        return get_or_build_index(self.document, self.revision)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": True,
            "menu": self.document,
            "metadata": {"lastUpdated": self.updated_at, "revision": self.revision},
            "cacheHit": self.cache_hit,
            "cacheStatus": self.cache_status,
        }


class MenuRepository:
    """
    Revision-cached access to the published menu and dining options.

    Example:
        >>> repo = MenuRepository(get_toast_api(), get_kv_store())
        >>> snapshot = await repo.get_menu()
        >>> print(snapshot.cache_status, snapshot.revision)
    """

    def __init__(
        self,
        api: BaseToastApi,
        kv: BaseKeyValueStore,
        settings: Optional[Settings] = None,
    ):
        self.api = api
        self.kv = kv
        self.settings = settings or get_settings()
        self._last_body: Optional[dict[str, Any]] = None

    async def _cached_body(self) -> Optional[dict[str, Any]]:
        body = await self.kv.get_json(MENU_BODY_KEY)
        if not isinstance(body, dict) or not isinstance(body.get("menu"), dict):
            return None
        # Reuse the decoded document so the index cache sees the same object
        if self._last_body is not None and self._last_body.get("revision") == body.get("revision"):
            return self._last_body
        self._last_body = body
        return body

    def _snapshot(self, body: dict[str, Any], status: str) -> MenuSnapshot:
        return MenuSnapshot(
            document=body["menu"],
            revision=body.get("revision"),
            updated_at=body.get("lastUpdated"),
            cache_status=status,
        )

    async def get_menu(self, refresh: bool = False) -> MenuSnapshot:
        """
        Return the current menu.

        Args:
            refresh: Skip the revision check and re-download the body

        Raises:
            UpstreamError: When upstream fails and nothing is cached
        """
        cached = await self._cached_body()
        try:
            metadata = await self.api.get_menu_metadata()
            revision = menu_revision(metadata)
            cached_revision = await self.kv.get(MENU_REV_KEY)

            if not refresh and cached and cached_revision == revision and cached.get("revision") == revision:
                logger.debug(f"Menu cache hit (revision {revision[:12]})")
                return self._snapshot(cached, "hit-fresh")

            document = await self.api.get_published_menu()
            if not isinstance(document, dict):
                raise UpstreamError("Published menu response was empty", route="/menus/v2/menus")
        except UpstreamError as e:
            if cached:
                logger.warning(f"⚠️ Menu refresh failed, serving stale body: {e}")
                return self._snapshot(cached, "hit-stale")
            raise

        updated_at = document.get("lastUpdated")
        if updated_at is None and isinstance(metadata, dict):
            updated_at = metadata.get("lastUpdated")
        body = {"revision": revision, "lastUpdated": updated_at, "menu": document}
        await self.kv.put_json(MENU_BODY_KEY, body, ttl_seconds=max(60, self.settings.menu_body_ttl_seconds))
        await self.kv.put(MENU_REV_KEY, revision, ttl_seconds=MENU_REV_TTL_SECONDS)
        self._last_body = body
        logger.info(f"✅ Menu downloaded (revision {revision[:12]})")
        return self._snapshot(body, "miss-network")

    async def get_dining_options(self) -> list[dict[str, Any]]:
        """
        Dining options, cached for an hour.

        Raises:
            UpstreamError: When upstream fails and nothing is cached
        """
        cached = await self.kv.get_json(DINING_OPTIONS_KEY)
        if isinstance(cached, list):
            return [option for option in cached if isinstance(option, dict)]
        options = await self.api.get_dining_options()
        await self.kv.put_json(DINING_OPTIONS_KEY, options, ttl_seconds=DINING_OPTIONS_TTL_SECONDS)
        return options
