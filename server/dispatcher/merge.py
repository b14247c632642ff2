# ─────────────────────────────────────────────────────────────────────────────
# Parameter Merge — caller overrides on top of model defaults
# ─────────────────────────────────────────────────────────────────────────────
# Text fields are appended to the default, scalar fields replace it.
# Overrides are not type-checked: whatever JSON value the caller sent is
# passed on to the worker. Null, false, zero, NaN and "" mean "not set", so
# a caller cannot request cfg_scale=0, denoising_strength=0 or seed=0.
# Lists and objects count as set, even when empty.
# ─────────────────────────────────────────────────────────────────────────────

import json
from typing import Any

from pydantic import JsonValue

from dispatcher.schemas import GenerateRequest, GenerationParameters

TEXT_FIELDS: tuple[str, ...] = ("prompt", "negative_prompt")
SCALAR_FIELDS: tuple[str, ...] = ("cfg_scale", "denoising_strength", "seed")

_SEPARATOR = ", "


def is_set(value: JsonValue) -> bool:
    """Whether an override counts as supplied."""
    if isinstance(value, (list, dict)):
        return True
    # NaN is the only value not equal to itself.
    return bool(value) and value == value


def as_text(value: JsonValue) -> str:
    """Render a prompt fragment. Non-string fragments are written as JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def append_text(default: str, override: JsonValue) -> str:
    """``default, override`` when the override is set, else the default."""
    if not is_set(override):
        return default
    return f"{default}{_SEPARATOR}{as_text(override)}"


def merge_parameters(
    defaults: GenerationParameters, overrides: GenerateRequest | None = None
) -> GenerationParameters:
    """Build the job payload for one request. Pure, never fails, no validation.

    Every field of ``defaults`` is present in the result; fields outside the
    recognised override set are copied verbatim.
    """
    if overrides is None:
        return defaults

    update: dict[str, Any] = {}
    for name in TEXT_FIELDS:
        override = getattr(overrides, name)
        if is_set(override):
            update[name] = append_text(getattr(defaults, name), override)
    for name in SCALAR_FIELDS:
        override = getattr(overrides, name)
        if is_set(override):
            update[name] = override

    return defaults.model_copy(update=update)
