from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

PROJECT_ID_ENV = "STOREFRONT_PERSONALIZE_PROJECT_ID"

DEFAULT_CONTENT_UIDS: dict[str, str] = {
    "USD": "cs91db6b7e0d7f71e1",
    "EUR": "csc4ee31b822d1b0d0",
    "INR": "csb474334af86d3526",
}

DEFAULT_COUNTRY_CURRENCY: dict[str, str] = {
    "United States of America": "USD",
    "US": "USD",
    "USA": "USD",
    "India": "INR",
    "IN": "INR",
}

DEFAULT_CURRENCY_COUNTRY: dict[str, str] = {
    "USD": "United States of America",
    "INR": "India",
    # no EUR audience is configured; EUR visitors match the US audience
    "EUR": "United States of America",
}


@dataclass(frozen=True)
class RunConfig:
    run_id: str
    seed: int
    start_date: str


@dataclass(frozen=True)
class FlushConfig:
    every_n_events: int = 5000
    or_every_seconds: float = 30.0


@dataclass(frozen=True)
class StorageConfig:
    duckdb_path: str
    clean_slate: bool = True
    flush: FlushConfig = FlushConfig()


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class PersonalizeConfig:
    project_id: str | None = None
    resolve_timeout_s: float = 5.0


@dataclass(frozen=True)
class GeoConfig:
    default_country: str = "United States of America"
    detect_timeout_s: float = 3.0


@dataclass(frozen=True)
class VariantsConfig:
    content_uids: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CONTENT_UIDS))
    country_currency: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_COUNTRY_CURRENCY)
    )
    currency_country: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_CURRENCY_COUNTRY)
    )
    default_currency: str = "USD"


@dataclass(frozen=True)
class StorefrontConfig:
    run: RunConfig
    storage: StorageConfig
    logging: LoggingConfig
    personalize: PersonalizeConfig
    geo: GeoConfig
    variants: VariantsConfig
    raw: dict[str, Any]  # original parsed YAML (for hashing / debugging)


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to a dict at the top level.")
    return data


def _str_mapping(section: str, value: Any, default: dict[str, str]) -> dict[str, str]:
    if value is None:
        return dict(default)
    if not isinstance(value, dict):
        raise TypeError(f"{section} must be a mapping/dict")
    return {str(k): str(v) for k, v in value.items()}


def parse_config(data: dict[str, Any]) -> StorefrontConfig:
    for key in ["run", "storage", "logging"]:
        if key not in data:
            raise ValueError(f"Missing required top-level config section: '{key}'")

    run = data.get("run") or {}
    storage = data.get("storage") or {}
    logging_cfg = data.get("logging") or {}
    personalize = data.get("personalize") or {}
    geo = data.get("geo") or {}
    variants = data.get("variants") or {}

    run_cfg = RunConfig(
        run_id=str(run.get("run_id", "auto")),
        seed=int(run["seed"]),
        start_date=str(run["start_date"]),
    )

    flush = storage.get("flush") or {}
    storage_cfg = StorageConfig(
        duckdb_path=str(storage["duckdb_path"]),
        clean_slate=bool(storage.get("clean_slate", True)),
        flush=FlushConfig(
            every_n_events=int(flush.get("every_n_events", 5000)),
            or_every_seconds=float(flush.get("or_every_seconds", 30.0)),
        ),
    )

    log_cfg = LoggingConfig(level=str(logging_cfg.get("level", "INFO")).upper())

    # empty string in YAML means "not configured", same as a missing key
    project_id = personalize.get("project_id") or os.environ.get(PROJECT_ID_ENV) or None
    personalize_cfg = PersonalizeConfig(
        project_id=None if project_id is None else str(project_id),
        resolve_timeout_s=float(personalize.get("resolve_timeout_s", 5.0)),
    )

    geo_cfg = GeoConfig(
        default_country=str(geo.get("default_country", "United States of America")),
        detect_timeout_s=float(geo.get("detect_timeout_s", 3.0)),
    )

    variants_cfg = VariantsConfig(
        content_uids=_str_mapping(
            "variants.content_uids", variants.get("content_uids"), DEFAULT_CONTENT_UIDS
        ),
        country_currency=_str_mapping(
            "variants.country_currency",
            variants.get("country_currency"),
            DEFAULT_COUNTRY_CURRENCY,
        ),
        currency_country=_str_mapping(
            "variants.currency_country",
            variants.get("currency_country"),
            DEFAULT_CURRENCY_COUNTRY,
        ),
        default_currency=str(variants.get("default_currency", "USD")).upper(),
    )

    return StorefrontConfig(
        run=run_cfg,
        storage=storage_cfg,
        logging=log_cfg,
        personalize=personalize_cfg,
        geo=geo_cfg,
        variants=variants_cfg,
        raw=data,
    )


def load_config(path: str | Path) -> StorefrontConfig:
    data = load_yaml(path)
    return parse_config(data)
