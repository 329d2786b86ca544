"""Shared fixtures: resolved configs, detection params and scratch directories.

Configs are always built through resolve_config so tests see the same
validation as a real run.
"""

import logging
import pytest
from pathlib import Path
import tempfile
import shutil

from gapfill.schemas import ParamConfig, UserConfig, resolve_config


# -- configuration --

@pytest.fixture
def param_config():
    """Default ParamConfig."""
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """InternalConfig resolved from defaults only.

    Examples
    --------
    >>> def test_filler_init(internal_config):
    ...     filler = GapFiller(internal_config)
    """
    return resolve_config(param_config, None, None)


@pytest.fixture
def make_config(param_config):
    """Factory: ``make_config(**user_overrides)`` -> InternalConfig.

    Examples
    --------
    >>> def test_custom_threshold(make_config):
    ...     config = make_config(cloud_threshold=0.4)
    ...     assert config.detection.cloud_probability_threshold == 0.4
    """
    def _make(**user_overrides):
        user = UserConfig(**user_overrides) if user_overrides else None
        return resolve_config(param_config, user, None)

    return _make


@pytest.fixture
def cloud_params(make_config):
    """Factory for CloudParams with plain (unsmoothed, unmorphed) detection.

    Gaussian smoothing, dilation and closing are disabled so that tests can
    reason about exact pixel counts. Keyword arguments override any
    detection field.
    """
    def _make(**overrides):
        detection = {
            "cloud_probability_sigma": 0.0,
            "cloud_dilation_radius": 0,
            "cloud_closing_radius": 0,
            "min_component_area": 1,
        }
        detection.update(overrides)
        return make_config(detection=detection).detection

    return _make


# -- filesystem and logging --

@pytest.fixture
def temp_dir():
    """Scratch directory removed after the test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def restore_root_logger():
    """Restore root logger level and handlers changed by a test."""
    root = logging.getLogger()
    level = root.level
    handlers = root.handlers[:]
    yield root
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
