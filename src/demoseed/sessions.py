"""Synthetic session identities.

Every session key found in the source log is mapped, the first time it is
seen, to a randomly generated identity: a start timestamp spread over the
requested day range, a fresh session id, sometimes a fresh visitor id, and
sometimes a set of UTM parameters. Later lines with the same key reuse it.
"""
import random
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from . import metrics
from .sampler import HOUR_WEIGHTS, pick_weighted
from .timeutil import MS_PER_DAY, MS_PER_HOUR

CAMPAIGNS = ["Qrr", "Krr", "q2promo", "q3promo", "wordonthefuture"]

# medium -> sources
MEDIUMS = {
    "social": ["LinkedIn", "Twitter", "Facebook", "Instagram", "Snapchat", "Reddit"],
    "search": ["google", "bing", "duckduckgo"],
    "newsletter": ["issue12", "issue6"],
}

TERMS = ["[UK]", "[US]", "[JP]"]

CONTENTS = ["b2b", "b2c", "enterprise", "retail"]

NEW_VISITOR_PROBABILITY = 0.4
UTM_PROBABILITY = 0.4
UTM_EXTRA_PROBABILITY = 0.6


def generate_utm_data(rng: Optional[random.Random] = None) -> Dict[str, str]:
    rng = rng or random
    medium = rng.choice(list(MEDIUMS))
    return {
        "utm_campaign": rng.choice(CAMPAIGNS),
        "utm_medium": medium,
        "utm_source": rng.choice(MEDIUMS[medium]),
        "utm_term": rng.choice(TERMS),
        "utm_content": rng.choice(CONTENTS),
    }


def random_uuid4(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


@dataclass(frozen=True)
class UtmAttribution:
    original: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionIdentity:
    timestamp: int
    session_id: str
    visitor_id: Optional[str] = None
    utm: UtmAttribution = field(default_factory=UtmAttribution)


class SessionState:
    """Lazily assigns and remembers a SessionIdentity per source session key."""

    def __init__(
        self,
        time_range: int,
        day_boundary_ms: int,
        rng: Optional[random.Random] = None,
        new_visitor_probability: float = NEW_VISITOR_PROBABILITY,
        utm_probability: float = UTM_PROBABILITY,
        utm_extra_probability: float = UTM_EXTRA_PROBABILITY,
    ):
        if isinstance(time_range, bool) or not isinstance(time_range, int) or time_range < 1:
            raise ValueError(f"time_range must be a positive integer, got {time_range!r}")
        self.time_range = time_range
        self.day_boundary_ms = int(day_boundary_ms)
        self.rng = rng or random.Random()
        self.new_visitor_probability = new_visitor_probability
        self.utm_probability = utm_probability
        self.utm_extra_probability = utm_extra_probability
        self._sessions: Dict[str, SessionIdentity] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_key: str) -> bool:
        return session_key in self._sessions

    @property
    def window(self) -> Tuple[int, int]:
        return (self.day_boundary_ms - self.time_range * MS_PER_DAY, self.day_boundary_ms)

    def resolve(self, session_key: str) -> SessionIdentity:
        identity = self._sessions.get(session_key)
        if identity is None:
            identity = self._new_identity()
            self._sessions[session_key] = identity
            metrics.IMPORT_SESSIONS_CREATED.inc()
        return identity

    def _new_identity(self) -> SessionIdentity:
        day = pick_weighted([1] * self.time_range, self.rng)
        hour = pick_weighted(HOUR_WEIGHTS, self.rng)
        timestamp = self.day_boundary_ms - day * MS_PER_DAY - hour * MS_PER_HOUR

        session_id = random_uuid4(self.rng)

        visitor_id = None
        if self.rng.random() < self.new_visitor_probability:
            visitor_id = random_uuid4(self.rng)

        utm = UtmAttribution()
        if self.rng.random() < self.utm_probability:
            original = generate_utm_data(self.rng)
            extra = {}
            if self.rng.random() < self.utm_extra_probability:
                extra = generate_utm_data(self.rng)
            utm = UtmAttribution(original=original, extra=extra)

        return SessionIdentity(timestamp=timestamp, session_id=session_id, visitor_id=visitor_id, utm=utm)
