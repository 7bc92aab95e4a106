from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from storefront.core.logging import get_logger
from storefront.features.sdk.types import SimGen


class AttributeOracle(Protocol):
    """detect_country() is a process body returning a country name or None."""

    def detect_country(self) -> SimGen: ...


class GeoBackend(Protocol):
    """One IP geolocation service. lookup() may raise or return None."""

    name: str

    def lookup(self) -> SimGen: ...


class ChainedCountryOracle:
    """
    Tries each backend in order and returns the first non-empty country.

    No backend is authoritative; a failure (exception, empty answer) moves on to
    the next one. Returns None when every backend failed.
    """

    def __init__(self, backends: Sequence[GeoBackend], logger: logging.Logger | None = None):
        if not backends:
            raise ValueError("ChainedCountryOracle needs at least one backend")
        self.backends = list(backends)
        self._logger = logger or get_logger(__name__)

    def detect_country(self) -> SimGen:
        for backend in self.backends:
            try:
                country = yield from backend.lookup()
            except Exception as exc:  # noqa: BLE001 - any backend may fail
                self._logger.warning(
                    "geo_backend_failed",
                    extra={"feature": "geolocation", "reason": f"{backend.name}: {exc}"},
                )
                continue

            country = (country or "").strip() if isinstance(country, str) else ""
            if country:
                self._logger.info(
                    "country_detected",
                    extra={"feature": "geolocation", "reason": backend.name},
                )
                return country

            self._logger.warning(
                "geo_backend_empty",
                extra={"feature": "geolocation", "reason": backend.name},
            )

        self._logger.error(
            "geo_all_backends_failed",
            extra={"feature": "geolocation", "reason": "no country"},
        )
        return None
