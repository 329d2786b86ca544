"""Common pydantic base for every gapfill configuration layer."""

from pydantic import BaseModel, ConfigDict


class GapfillBaseModel(BaseModel):
    """Strict base: unknown keys are rejected, assignments are re-validated,
    enums are stored as their values and strings are stripped.

    UserConfig relaxes ``extra`` so user files may carry unrelated keys.
    """

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )
