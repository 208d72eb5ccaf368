"""
Provider fallback chain.

Each provider has exactly one designated fallback and the mapping forms a
single cycle over all providers, so a job that keeps failing walks
A -> B -> C -> ... -> A and never retries on the same provider twice in a
row. Termination is the job queue's max-retries cap, not the chain.
"""

from typing import Mapping


class FallbackChain:
    """
    Validated cyclic fallback mapping.

    Usage:
        chain = FallbackChain.from_order(["sora", "runway", "domoai", "kling"])
        chain.next("sora")          # "runway"
        chain.sequence("sora", 3)   # ["runway", "domoai", "kling"]
    """

    def __init__(self, mapping: Mapping[str, str]):
        self._mapping = dict(mapping)
        self._validate()

    @classmethod
    def from_order(cls, order: list[str]) -> "FallbackChain":
        """Build the cycle order[0] -> order[1] -> ... -> order[-1] -> order[0]."""
        if len(order) != len(set(order)):
            raise ValueError(f"Fallback order contains duplicates: {order}")
        return cls({
            provider: order[(i + 1) % len(order)]
            for i, provider in enumerate(order)
        })

    def _validate(self):
        if len(self._mapping) < 2:
            raise ValueError("Fallback chain needs at least two providers")

        for provider, fallback in self._mapping.items():
            if provider == fallback:
                raise ValueError(f"Provider {provider} cannot fall back to itself")
            if fallback not in self._mapping:
                raise ValueError(
                    f"Fallback {fallback} for {provider} has no fallback of its own"
                )

        # Walking from any provider must visit every provider before returning
        start = next(iter(self._mapping))
        seen = [start]
        current = self._mapping[start]
        while current != start:
            if current in seen:
                raise ValueError(f"Fallback chain has a cycle not through {start}: {seen}")
            seen.append(current)
            current = self._mapping[current]

        if len(seen) != len(self._mapping):
            missing = sorted(set(self._mapping) - set(seen))
            raise ValueError(f"Fallback chain is split into several cycles, unreachable: {missing}")

    @property
    def providers(self) -> list[str]:
        return list(self._mapping)

    def __contains__(self, provider: str) -> bool:
        return provider in self._mapping

    def next(self, provider: str) -> str:
        """Designated fallback for ``provider``."""
        try:
            return self._mapping[provider]
        except KeyError:
            raise KeyError(f"Provider {provider} is not part of the fallback chain") from None

    def sequence(self, start: str, length: int) -> list[str]:
        """The next ``length`` providers tried after ``start``."""
        result = []
        current = start
        for _ in range(length):
            current = self.next(current)
            result.append(current)
        return result

    def as_dict(self) -> dict[str, str]:
        return dict(self._mapping)
