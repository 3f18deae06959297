"""Tests for cogsustain.validation."""

import json

import pytest

from cogsustain.protocols import ArticulationValidator, TransportError
from cogsustain.validation import (
    RETRY_FEEDBACK,
    VALIDATOR_SYSTEM,
    ModelArticulationValidator,
    parse_verdict,
)


class TestParseVerdict:
    def test_valid_verdict(self):
        result = parse_verdict(
            json.dumps({"isValid": True, "scores": [0.9, "0.4"], "feedback": " Good. "}), 2
        )
        assert result.is_valid
        assert result.scores == [0.9, 0.4]
        assert result.feedback == "Good."

    def test_scores_clamped_and_truncated(self):
        result = parse_verdict(json.dumps({"isValid": False, "scores": [2, -1, "x", 0.5]}), 3)
        assert result.scores == [1.0, 0.0, 0.0]
        assert not result.is_valid

    def test_truthy_non_bool_is_not_valid(self):
        assert not parse_verdict('{"isValid": "yes"}', 1).is_valid

    def test_fenced_json(self):
        assert parse_verdict('```json\n{"isValid": true}\n```', 1).is_valid

    def test_missing_flag(self):
        with pytest.raises(ValueError):
            parse_verdict('{"scores": [1]}', 1)

    def test_not_json(self):
        with pytest.raises(ValueError):
            parse_verdict("Looks fine to me!", 1)


class TestModelArticulationValidator:
    @pytest.mark.asyncio
    async def test_sends_prompts_and_answers(self, fake_model_factory):
        model = fake_model_factory(reply='{"isValid": true, "scores": [0.8, 0.7]}')
        validator = ModelArticulationValidator(model)

        result = await validator.validate("Explain caching", ["What?", "Why?"], ["A", "B"])

        assert isinstance(validator, ArticulationValidator)
        assert result.is_valid
        assert result.scores == [0.8, 0.7]
        call = model.generate_calls[0]
        assert call["system"] == VALIDATOR_SYSTEM
        content = call["messages"][0].content
        assert content.startswith("Question: Explain caching")
        assert "Prompt 2: Why?\nAnswer 2: B" in content

    @pytest.mark.asyncio
    async def test_unreadable_verdict_asks_for_retry(self, fake_model_factory):
        validator = ModelArticulationValidator(fake_model_factory(reply="sure, valid"))
        result = await validator.validate("Q", ["p"], ["a"])
        assert not result.is_valid
        assert result.feedback == RETRY_FEEDBACK

    @pytest.mark.asyncio
    async def test_backend_failure_asks_for_retry(self, fake_model_factory):
        class Failing(fake_model_factory):
            async def generate(self, messages, **kwargs):
                raise TransportError("server", "down")

        result = await ModelArticulationValidator(Failing()).validate("Q", ["p"], ["a"])
        assert not result.is_valid
        assert result.feedback == RETRY_FEEDBACK
