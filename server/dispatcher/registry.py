# ─────────────────────────────────────────────────────────────────────────────
# Model Registry — closed table of model classes, their defaults and queues
# ─────────────────────────────────────────────────────────────────────────────


from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType

import structlog

from dispatcher.broker.protocol import JobQueue
from dispatcher.schemas import GenerationParameters

logger = structlog.get_logger(__name__)

_NEGATIVE_COMMON = (
    "lowres, bad anatomy, bad hands, text, error, missing fingers, extra digit, "
    "fewer digits, cropped, worst quality, low quality, normal quality, jpeg artifacts,"
    "signature, watermark, username, blurry, artist name"
)


class ModelClass(StrEnum):
    """Every model a request can be routed to. Values are the queue names."""

    anything = "anything"
    aom = "aom"
    counterfeit = "counterfeit"


def build_defaults(steps: int) -> dict[ModelClass, GenerationParameters]:
    """Default generation parameters per model, with a shared step count."""
    return {
        ModelClass.anything: GenerationParameters(
            prompt="masterpiece, best quality",
            negative_prompt=f"EasyNegative, extra fingers,fewer fingers, {_NEGATIVE_COMMON}",
            sampler_index="DPM++ 2M Karras",
            steps=steps,
            cfg_scale=7,
            sd_model_checkpoint="anything-v4.0.ckpt",
            denoising_strength=0,
            seed=-1,
        ),
        ModelClass.aom: GenerationParameters(
            prompt="",
            negative_prompt=f"EasyNegative, (worst quality, low quality:1.4), {_NEGATIVE_COMMON}",
            sampler_index="DPM++ SDE Karras",
            steps=steps,
            cfg_scale=5,
            sd_model_checkpoint="aom3.safetensors",
            denoising_strength=0.5,
            seed=-1,
        ),
        ModelClass.counterfeit: GenerationParameters(
            prompt="((masterpiece,best quality))",
            negative_prompt=f"EasyNegative, extra fingers,fewer fingers, {_NEGATIVE_COMMON}",
            sampler_index="DPM++ 2M Karras",
            steps=steps,
            cfg_scale=10,
            sd_model_checkpoint="counterfeit-v2.5.safetensors",
            denoising_strength=0.5,
            seed=-1,
        ),
    }


@dataclass(frozen=True)
class ModelRoute:
    """Everything needed to dispatch one model: defaults plus its queue."""

    model: ModelClass
    defaults: GenerationParameters
    queue: JobQueue


class ModelRegistry:
    """Read-only lookup from a model name to its route.

    Built once in the lifespan and shared by every request; nothing
    mutates it afterwards, so no locking is needed.
    """

    def __init__(
        self,
        defaults: dict[ModelClass, GenerationParameters],
        queues: dict[ModelClass, JobQueue],
    ) -> None:
        missing = set(ModelClass) - (defaults.keys() & queues.keys())
        extra = (defaults.keys() | queues.keys()) - set(ModelClass)
        if missing or extra:
            raise ValueError(
                f"Model table must cover exactly {sorted(ModelClass)}; "
                f"missing={sorted(missing)} extra={sorted(extra)}"
            )
        self._routes = MappingProxyType(
            {m: ModelRoute(model=m, defaults=defaults[m], queue=queues[m]) for m in ModelClass}
        )
        logger.info("model_registry_built", models=self.names)

    @staticmethod
    def normalize(name: str) -> str:
        """Canonical form of a model name (lookups are case-insensitive)."""
        return name.strip().lower()

    def lookup(self, name: str) -> ModelRoute | None:
        """Return the route for ``name``, or None if it is not a known model."""
        try:
            model = ModelClass(self.normalize(name))
        except ValueError:
            return None
        return self._routes[model]

    def routes(self) -> list[ModelRoute]:
        return list(self._routes.values())

    @property
    def names(self) -> list[str]:
        """Canonical names of every registered model."""
        return [m.value for m in self._routes]
