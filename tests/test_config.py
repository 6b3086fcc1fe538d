"""Tests for RLMConfig validation."""

import pytest

from rlm_runtime.config import RLMConfig


class TestRLMConfig:
    def test_defaults(self):
        config = RLMConfig()
        assert config.max_iterations == 20
        assert config.max_depth == 1
        assert config.sandbox_timeout == 30.0
        assert config.max_cost is None
        assert config.max_total_tokens is None
        assert config.cache_sub_queries is False

    def test_zero_depth_allowed(self):
        assert RLMConfig(max_depth=0).max_depth == 0

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_iterations", 0),
            ("max_depth", -1),
            ("sandbox_timeout", 0),
            ("max_cost", -0.01),
            ("max_total_tokens", -1),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValueError, match=field):
            RLMConfig(**{field: value})
