import pytest
from pydantic import ValidationError

from gapfill.schemas import (
    CLIConfig,
    CloudParams,
    InternalConfig,
    ParamConfig,
    SkipShadowDetection,
    UserConfig,
    resolve_config,
)
from gapfill.schemas.resolve import deep_merge

pytestmark = pytest.mark.unit


def test_defaults_resolve(internal_config):
    assert isinstance(internal_config, InternalConfig)
    assert isinstance(internal_config.detection, CloudParams)
    assert internal_config.detection.connectivity == 8
    assert internal_config.store.db_filename == "approximation.db"
    assert internal_config.pipeline.on_contract_violation == "fail_fast"
    assert internal_config.filler.bands == ["B02", "B03", "B04", "B08", "B11"]


def test_user_overrides_param(param_config):
    user = UserConfig(cloud_threshold=0.4, data_dir="/data/field_12")
    config = resolve_config(param_config, user)
    assert config.detection.cloud_probability_threshold == 0.4
    assert config.data_dir == "/data/field_12"
    # untouched defaults survive
    assert config.detection.cloud_mask_threshold == param_config.detection.cloud_mask_threshold


def test_cli_overrides_user(param_config):
    user = UserConfig(workers=2, data_dir="/data/a", start_date="2023-01-01")
    cli = CLIConfig(workers=8, data_dir="/data/b")
    config = resolve_config(param_config, user, cli)
    assert config.pipeline.workers == 8
    assert config.data_dir == "/data/b"
    assert config.pipeline.start_date == "2023-01-01"
    # the user model is not mutated by resolution
    assert user.workers == 2


def test_dict_inputs_are_accepted():
    config = resolve_config({}, {"WORKERS": 3}, {"log_level": "DEBUG"})
    assert config.pipeline.workers == 3
    assert config.logging.level == "DEBUG"


def test_nested_detection_overrides_flat_alias(param_config):
    user = UserConfig(cloud_threshold=0.3, detection={"cloud_probability_threshold": 0.7})
    config = resolve_config(param_config, user)
    assert config.detection.cloud_probability_threshold == 0.7


def test_skip_shadow_partial_override_merges(param_config):
    user = UserConfig(skip_shadows=True)
    config = resolve_config(param_config, user)
    skip = config.detection.skip_shadow_detection
    assert skip.decision is True
    assert skip.threshold == param_config.detection.skip_shadow_detection.threshold


def test_reversed_date_range_across_layers(param_config):
    user = UserConfig(start_date="2023-06-01")
    cli = CLIConfig(end_date="2023-05-01")
    with pytest.raises(ValueError, match="before start_date"):
        resolve_config(param_config, user, cli)


def test_reversed_date_range_within_param():
    with pytest.raises(ValidationError):
        ParamConfig(pipeline={"start_date": "2023-06-01", "end_date": "2023-05-01"})


def test_invalid_threshold_rejected(param_config):
    user = UserConfig(cloud_threshold=1.5)
    with pytest.raises(ValidationError):
        resolve_config(param_config, user)


def test_height_range_checked(param_config):
    user = UserConfig(detection={"cloud_height_min": 5000, "cloud_height_max": 1000})
    with pytest.raises(ValidationError, match="cloud_height_max"):
        resolve_config(param_config, user)


def test_internal_config_is_frozen(internal_config):
    with pytest.raises(ValidationError):
        internal_config.base_dir = "/elsewhere"
    with pytest.raises(ValidationError):
        internal_config.detection.connectivity = 4


def test_cloud_params_require_every_field():
    with pytest.raises(ValidationError):
        CloudParams()


def test_cloud_params_from_dump_round_trip(internal_config):
    params = CloudParams(**internal_config.detection.model_dump())
    assert params == internal_config.detection


@pytest.mark.parametrize("decision,threshold,fraction,expected", [
    (False, 0.0, 0.9, False),
    (True, 0.5, 0.4, False),
    (True, 0.5, 0.5, True),
    (True, 0.0, 0.0, True),
])
def test_skip_shadow_detection_applies(decision, threshold, fraction, expected):
    skip = SkipShadowDetection(decision=decision, threshold=threshold)
    assert skip.applies(fraction) is expected


def test_deep_merge_is_recursive():
    base = {"a": 1, "b": {"c": 2, "d": 3}}
    merged = deep_merge(base, {"b": {"d": 4, "e": 5}, "f": 6})
    assert merged == {"a": 1, "b": {"c": 2, "d": 4, "e": 5}, "f": 6}
    assert base == {"a": 1, "b": {"c": 2, "d": 3}}
