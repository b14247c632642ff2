# ─────────────────────────────────────────────────────────────────────────────
# Schema Factory Tests — polyfactory
# ─────────────────────────────────────────────────────────────────────────────
# Generated request/response instances exercised against the merge rules and
# the wire shape of the generate endpoint.
# ─────────────────────────────────────────────────────────────────────────────

import random

import pytest
from dirty_equals import IsFloat, IsInt, IsStr
from polyfactory import Use
from polyfactory.factories.pydantic_factory import ModelFactory
from pydantic import ValidationError

from dispatcher.merge import merge_parameters
from dispatcher.registry import ModelClass, build_defaults
from dispatcher.schemas import GenerateRequest, GenerateResponse, GenerationParameters, JobResult

DEFAULTS = build_defaults(steps=20)


# Override fields are free-form JSON, so each factory pins them to the
# shapes real callers and workers send.


def _fragment() -> str | None:
    return random.choice([None, "", "1girl", "smile, looking at viewer"])


def _scale() -> float | None:
    return random.choice([None, 0, round(random.uniform(1, 20), 1)])


def _seed() -> int:
    return random.randint(-1, 2**32)


class GenerateRequestFactory(ModelFactory):
    __model__ = GenerateRequest

    prompt = Use(_fragment)
    negative_prompt = Use(_fragment)
    cfg_scale = Use(_scale)
    denoising_strength = Use(_scale)
    seed = Use(_seed)


class GenerateResponseFactory(ModelFactory):
    __model__ = GenerateResponse

    positive = Use(_fragment)
    negative = Use(_fragment)
    cfg_scale = Use(lambda: round(random.uniform(1, 20), 1))
    denoising_strength = Use(random.random)
    seed = Use(_seed)


class JobResultFactory(ModelFactory):
    __model__ = JobResult

    seed = Use(_seed)


class TestGenerateRequestFactory:
    def test_batch_merges_without_losing_fields(self):
        """Any generated request merges into a complete payload."""
        for request in GenerateRequestFactory.batch(50):
            for model in ModelClass:
                payload = merge_parameters(DEFAULTS[model], request)
                assert isinstance(payload, GenerationParameters)
                assert payload.steps == 20
                assert payload.sampler_index == DEFAULTS[model].sampler_index

    def test_overrides_applied(self):
        request = GenerateRequestFactory.build(
            prompt="1girl", negative_prompt=None, cfg_scale=9.5, denoising_strength=None, seed=42
        )
        payload = merge_parameters(DEFAULTS[ModelClass.anything], request)
        assert payload.prompt == "masterpiece, best quality, 1girl"
        assert payload.negative_prompt == DEFAULTS[ModelClass.anything].negative_prompt
        assert payload.cfg_scale == 9.5
        assert payload.seed == 42

    def test_unknown_keys_dropped(self):
        request = GenerateRequest.model_validate({"prompt": "x", "steps": 150, "sampler": "Euler"})
        assert request.model_dump() == {
            "prompt": "x",
            "negative_prompt": None,
            "cfg_scale": None,
            "denoising_strength": None,
            "seed": None,
        }

    def test_values_kept_as_sent(self):
        request = GenerateRequest.model_validate({"prompt": 7, "cfg_scale": "loud"})
        assert request.prompt == 7
        assert request.cfg_scale == "loud"

    def test_non_object_body_is_empty(self):
        assert GenerateRequest.model_validate([1, 2]) == GenerateRequest()


class TestGenerateResponseFactory:
    def test_response_shape_with_dirty_equals(self):
        data = GenerateResponseFactory.build(positive="1girl", negative=None).model_dump()

        assert data == {
            "base64": IsStr,
            "positive": "1girl",
            "negative": None,
            "cfg_scale": IsFloat,
            "denoising_strength": IsFloat,
            "model": IsStr,
            "seed": IsInt,
        }

    def test_batch_serializes(self):
        for response in GenerateResponseFactory.batch(20):
            assert GenerateResponse.model_validate_json(response.model_dump_json()) == response


class TestJobResult:
    def test_factory_batch(self):
        results = JobResultFactory.batch(20)
        assert all(isinstance(r.seed, int) for r in results)

    def test_extra_worker_fields_kept(self):
        result = JobResult.model_validate({"base64": "a", "seed": 1, "info": {"steps": 20}})
        assert result.model_extra == {"info": {"steps": 20}}

    def test_missing_image_rejected(self):
        with pytest.raises(ValidationError):
            JobResult.model_validate({"seed": 1})
