from __future__ import annotations

from storefront.core.config import load_yaml, parse_config
from storefront.features.bootstrap.service import BootstrapResult, bootstrap_run


def run(
    config_path: str,
    *,
    visitors: int | None = None,
    horizon_s: float | None = None,
) -> BootstrapResult:
    data = load_yaml(config_path)
    # command-line overrides go into the raw config so the auto run id reflects them
    if visitors is not None or horizon_s is not None:
        simulation = dict(data.get("simulation") or {})
        if visitors is not None:
            simulation["visitors"] = visitors
        if horizon_s is not None:
            simulation["horizon_s"] = horizon_s
        data = {**data, "simulation": simulation}
    return bootstrap_run(parse_config(data), config_path=config_path)
