"""Merge the three configuration layers into one frozen InternalConfig.

Later layers win: ParamConfig defaults, then the user file, then command
line flags.
"""

from typing import Optional, Type, TypeVar, Union

from pydantic import BaseModel

from gapfill.schemas.param import ParamConfig
from gapfill.schemas.user import UserConfig
from gapfill.schemas.cli import CLIConfig
from gapfill.schemas.internal import InternalConfig

_Layer = TypeVar("_Layer", bound=BaseModel)


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Recursively merge ``overrides`` into a copy of ``base``.

    Nested dicts are merged key by key; any other value replaces the one
    below it.

    Examples
    --------
    >>> deep_merge({"filler": {"neighbor_max_gap_days": 10, "distance_weight": 0.5}},
    ...            {"filler": {"distance_weight": 0.8}})
    {'filler': {'neighbor_max_gap_days': 10, 'distance_weight': 0.8}}
    """
    merged = dict(base)
    for layer in overrides:
        for key, value in layer.items():
            below = merged.get(key)
            if isinstance(below, dict) and isinstance(value, dict):
                merged[key] = deep_merge(below, value)
            else:
                merged[key] = value
    return merged


def _as_model(value, model: Type[_Layer]) -> _Layer:
    if isinstance(value, model):
        return value
    return model.model_validate(value or {})


def _check_date_window(pipeline: dict) -> None:
    start, end = pipeline.get("start_date"), pipeline.get("end_date")
    if start and end and start > end:
        raise ValueError(f"end_date {end} is before start_date {start}")


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Build the runtime configuration.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Complete defaults.
    user_cfg : dict or UserConfig, optional
        Flat user overrides (see ``UserConfig``).
    cli_cfg : dict or CLIConfig, optional
        Command line overrides.

    Returns
    -------
    InternalConfig

    Raises
    ------
    pydantic.ValidationError
        If a layer or the merged result is invalid.
    ValueError
        If the merged date window is reversed.

    Examples
    --------
    >>> config = resolve_config(ParamConfig(), {"cloud_threshold": 0.4})
    >>> config.detection.cloud_probability_threshold
    0.4
    """
    param = _as_model(param_cfg, ParamConfig)
    user = _as_model(user_cfg, UserConfig)
    cli = _as_model(cli_cfg, CLIConfig)

    merged = deep_merge(
        param.model_dump(),
        user.to_internal_overrides(),
        cli.to_internal_overrides(),
    )
    # each layer may be valid on its own while the combination is reversed
    _check_date_window(merged["pipeline"])

    return InternalConfig.model_validate(merged)
