# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Request / Response / Job Schemas
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator


class GenerationParameters(BaseModel):
    """Full parameter set handed to a worker.

    Used both for a model's defaults and for the merged job payload, so a
    payload can never be missing a default field.
    """

    model_config = ConfigDict(frozen=True)

    prompt: str
    negative_prompt: str
    sampler_index: str
    steps: int
    # Caller overrides replace these as sent, without type checks.
    cfg_scale: JsonValue
    sd_model_checkpoint: str
    denoising_strength: JsonValue
    seed: JsonValue


class GenerateRequest(BaseModel):
    """Caller overrides for POST /generate/{model}. Every field is optional.

    Any JSON value is accepted for any field; the merge decides what counts
    as supplied. A body that is not a JSON object carries no overrides.
    """

    model_config = ConfigDict(extra="ignore")

    prompt: JsonValue = Field(None, description="Appended to the model's default prompt")
    negative_prompt: JsonValue = Field(
        None, description="Appended to the model's default negative prompt"
    )
    cfg_scale: JsonValue = None
    denoising_strength: JsonValue = None
    seed: JsonValue = None

    @model_validator(mode="before")
    @classmethod
    def _objects_only(cls, data: Any) -> Any:
        return data if isinstance(data, (dict, BaseModel)) else {}


class JobResult(BaseModel):
    """Worker return value. Only ``base64`` and ``seed`` are read here."""

    model_config = ConfigDict(extra="allow")

    base64: str
    seed: JsonValue


class GenerateResponse(BaseModel):
    """Finished generation, echoed back to the caller."""

    base64: str = Field(..., description="Encoded image produced by the worker")
    positive: JsonValue = Field(..., description="Prompt fragment supplied by the caller")
    negative: JsonValue = Field(..., description="Negative prompt fragment supplied by the caller")
    cfg_scale: JsonValue
    denoising_strength: JsonValue
    model: str
    seed: JsonValue = Field(..., description="Seed the worker actually used")


class LivenessResponse(BaseModel):
    """Liveness probe — minimal, near-zero cost."""

    status: str = "ok"


class ReadinessResponse(BaseModel):
    """Readiness probe — is the broker reachable?"""

    status: str  # "ready" or "not_ready"
    broker_connected: bool
    models: list[str]

