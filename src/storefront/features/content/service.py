from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from storefront.core.logging import get_logger
from storefront.features.currency.pricing import format_price
from storefront.features.sdk.types import SimGen
from storefront.features.variants.types import ContentVariantUid, require_content_uids


class CmsClient(Protocol):
    """
    Headless CMS entry query. variant_uids == [] means base content.
    Returns a list of entry dicts.
    """

    def fetch_entries(self, content_type: str, *, variant_uids: list[str]) -> SimGen: ...


@dataclass(frozen=True)
class ContentPage:
    content_type: str
    entries: list[dict[str, Any]] = field(default_factory=list)
    variant_uids: tuple[str, ...] = ()
    # False when base content was served (no uids, or the variant query failed)
    is_personalized: bool = False

    def prices(self, currency: str) -> list[str]:
        return [format_price(e.get("price"), currency) for e in self.entries]


class ContentFetchFacade:
    """
    Variant-scoped CMS fetches. Accepts ContentVariantUid only; an empty set
    fetches base content. A failed variant query falls back to base content once.
    """

    def __init__(self, *, cms: CmsClient, logger: logging.Logger | None = None) -> None:
        self.cms = cms
        self._logger = logger or get_logger(__name__)

    def fetch(self, content_type: str, content_uids: Iterable[ContentVariantUid]) -> SimGen:
        values = sorted(u.value for u in require_content_uids(content_uids))

        if values:
            try:
                entries = yield from self.cms.fetch_entries(content_type, variant_uids=values)
            except Exception as exc:  # noqa: BLE001 - base content is always an option
                self._logger.warning(
                    "variant_content_failed",
                    extra={"feature": "content", "reason": str(exc)},
                )
            else:
                return ContentPage(
                    content_type=content_type,
                    entries=list(entries),
                    variant_uids=tuple(values),
                    is_personalized=True,
                )

        entries = yield from self.cms.fetch_entries(content_type, variant_uids=[])
        return ContentPage(content_type=content_type, entries=list(entries))
