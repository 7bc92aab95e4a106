from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ATTR_COUNTRY = "country"
ATTR_CURRENCY = "currency"
ATTR_COLOR = "color"

# degraded_reason values
NOT_CONFIGURED = "not_configured"
CONNECTION_FAILURE = "connection_failure"
TIMEOUT = "timeout"


class IncompleteAttributesError(ValueError):
    """Raised when an attribute set cannot be matched as submitted (e.g. color without country)."""


@dataclass(frozen=True, slots=True, order=True)
class ShortAlias:
    """
    Compact per-experience variant alias ("0", "1", ...).

    The only identifier the impression-recording call accepts.
    """

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value:
            raise ValueError("ShortAlias must be a non-empty string")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True, order=True)
class ContentVariantUid:
    """
    Full content-system variant identifier ("cs91db6b7e0d7f71e1").

    The only identifier variant-scoped content fetches accept.
    """

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value:
            raise ValueError("ContentVariantUid must be a non-empty string")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class VisitorAttributes(Mapping[str, str]):
    """
    Immutable attribute set submitted to the personalization connection.

    Built incrementally with `with_attribute`; each call returns a new instance.
    """

    values: tuple[tuple[str, str], ...] = ()

    @classmethod
    def of(cls, **attrs: str | None) -> VisitorAttributes:
        return cls.from_mapping({k: v for k, v in attrs.items() if v is not None})

    @classmethod
    def from_mapping(cls, attrs: Mapping[str, Any]) -> VisitorAttributes:
        items: list[tuple[str, str]] = []
        for key, value in attrs.items():
            k = str(key).strip()
            v = str(value).strip()
            if not k:
                raise ValueError("attribute names must be non-empty strings")
            if not v:
                raise ValueError(f"attribute {k!r} must have a non-empty value")
            items.append((k, v))
        return cls(values=tuple(sorted(items)))

    def with_attribute(self, name: str, value: str) -> VisitorAttributes:
        merged = dict(self.values)
        merged[name] = value
        return VisitorAttributes.from_mapping(merged)

    def without(self, name: str) -> VisitorAttributes:
        return VisitorAttributes(values=tuple(kv for kv in self.values if kv[0] != name))

    def as_dict(self) -> dict[str, str]:
        return dict(self.values)

    def __getitem__(self, key: str) -> str:
        for k, v in self.values:
            if k == key:
                return v
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self.values)

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class ResolvedVariantSet:
    short_aliases: frozenset[ShortAlias]
    content_uids: frozenset[ContentVariantUid]
    source_attributes: VisitorAttributes
    resolved_at: datetime
    raw_identifiers: tuple[str, ...] = ()
    # None when the connection answered; otherwise why the set is empty
    degraded_reason: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.short_aliases and not self.content_uids

    @property
    def is_degraded(self) -> bool:
        return self.degraded_reason is not None

    def sorted_aliases(self) -> list[str]:
        return [a.value for a in sorted(self.short_aliases)]

    def sorted_content_uids(self) -> list[str]:
        return [u.value for u in sorted(self.content_uids)]


def empty_variant_set(
    attributes: VisitorAttributes, *, resolved_at: datetime, reason: str | None = None
) -> ResolvedVariantSet:
    return ResolvedVariantSet(
        short_aliases=frozenset(),
        content_uids=frozenset(),
        source_attributes=attributes,
        resolved_at=resolved_at,
        degraded_reason=reason,
    )


@dataclass(frozen=True)
class DisplayContext:
    """What is on screen when impressions are recorded."""

    page: str
    content_type: str = "shoes"
    product_ids: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def render_key(self) -> tuple[str, tuple[str, ...]]:
        return (self.page, self.product_ids)

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload["page"] = self.page
        payload["contentType"] = self.content_type
        if self.product_ids:
            payload["productIds"] = list(self.product_ids)
        return payload


def require_short_aliases(aliases: Iterable[Any]) -> list[ShortAlias]:
    out: list[ShortAlias] = []
    for alias in aliases:
        if not isinstance(alias, ShortAlias):
            raise TypeError(
                f"impressions accept ShortAlias only, got {type(alias).__name__}: {alias!r}"
            )
        out.append(alias)
    return out


def require_content_uids(uids: Iterable[Any]) -> list[ContentVariantUid]:
    out: list[ContentVariantUid] = []
    for uid in uids:
        if not isinstance(uid, ContentVariantUid):
            raise TypeError(
                f"content fetches accept ContentVariantUid only, got {type(uid).__name__}: {uid!r}"
            )
        out.append(uid)
    return out
