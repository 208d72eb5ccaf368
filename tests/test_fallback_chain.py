"""
Fallback chain validation and traversal.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.providers import FallbackChain


class TestFallbackChain:

    def test_default_cycle(self):
        chain = FallbackChain.from_order(["sora", "runway", "domoai", "kling"])

        assert chain.next("sora") == "runway"
        assert chain.next("runway") == "domoai"
        assert chain.next("domoai") == "kling"
        assert chain.next("kling") == "sora"

    def test_sequence_walks_the_cycle(self):
        chain = FallbackChain.from_order(["sora", "runway", "domoai", "kling"])

        assert chain.sequence("sora", 3) == ["runway", "domoai", "kling"]
        assert chain.sequence("kling", 5) == ["sora", "runway", "domoai", "kling", "sora"]

    def test_never_falls_back_to_itself(self):
        chain = FallbackChain.from_order(["sora", "runway", "domoai", "kling"])

        for provider in chain.providers:
            assert chain.next(provider) != provider

    def test_explicit_mapping(self):
        chain = FallbackChain({"a": "c", "b": "a", "c": "b"})

        assert chain.sequence("a", 3) == ["c", "b", "a"]
        assert chain.as_dict() == {"a": "c", "b": "a", "c": "b"}

    def test_rejects_self_loop(self):
        with pytest.raises(ValueError, match="itself"):
            FallbackChain({"sora": "sora", "runway": "sora"})

    def test_rejects_dangling_fallback(self):
        with pytest.raises(ValueError):
            FallbackChain({"sora": "runway", "runway": "veo"})

    def test_rejects_split_cycles(self):
        with pytest.raises(ValueError):
            FallbackChain({"sora": "runway", "runway": "sora", "domoai": "kling", "kling": "domoai"})

    def test_rejects_tail_into_cycle(self):
        # kling -> sora enters a cycle that never returns to kling
        with pytest.raises(ValueError):
            FallbackChain({"kling": "sora", "sora": "runway", "runway": "sora"})

    def test_rejects_single_provider(self):
        with pytest.raises(ValueError):
            FallbackChain.from_order(["sora"])

    def test_rejects_duplicates(self):
        with pytest.raises(ValueError):
            FallbackChain.from_order(["sora", "runway", "sora"])

    def test_unknown_provider(self):
        chain = FallbackChain.from_order(["sora", "runway"])

        assert "veo" not in chain
        with pytest.raises(KeyError):
            chain.next("veo")
