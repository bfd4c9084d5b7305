"""SeedManager — deterministic, HMAC-derived deck seeds per hand.

Seeds depend only on (tournament seed, run id, hand number), so a hand
replayed after a crash is dealt exactly the same cards.
"""

import hashlib
import hmac


class SeedManager:
    """Produces deterministic, isolated seeds for each hand of a run."""

    def __init__(self, tournament_seed: int):
        self._tournament_seed = tournament_seed

    def get_hand_seed(self, run_id: str, hand_number: int) -> int:
        """Derive a hand seed via HMAC. Same inputs always produce the same seed."""
        key = self._tournament_seed.to_bytes(8, byteorder="big", signed=True)
        msg = f"{run_id}:{hand_number}".encode("utf-8")
        digest = hmac.new(key, msg, hashlib.sha256).digest()
        return int.from_bytes(digest[:8], byteorder="big")

