"""Relayer identities and the pools that hand them out per request."""

import itertools
import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from eth_account import Account
from eth_account.signers.local import LocalAccount

from payment_errors import ConfigurationError


@dataclass(frozen=True)
class RelayerIdentity:
    """Gas-paying submitter. Never the sender of value."""

    account: LocalAccount = field(repr=False, compare=False)
    address: str

    @classmethod
    def from_key(cls, private_key: str) -> "RelayerIdentity":
        account = Account.from_key(private_key)
        return cls(account=account, address=account.address)


class RelayerPool(ABC):
    """Selection strategy over a fixed set of relayer keys."""

    def __init__(self, private_keys: tuple[str, ...] | list[str]):
        self._keys = tuple(private_keys)
        self._identities: list[RelayerIdentity] | None = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    def identities(self) -> list[RelayerIdentity]:
        # Keys are parsed on first use so an empty or bad list fails per request.
        with self._lock:
            if self._identities is None:
                identities = []
                for index, key in enumerate(self._keys):
                    try:
                        identities.append(RelayerIdentity.from_key(key))
                    except Exception as exc:
                        raise ConfigurationError(
                            "No relayer available",
                            f"Relayer key #{index} is invalid: {type(exc).__name__}",
                        ) from exc
                self._identities = identities
            return self._identities

    def acquire(self) -> RelayerIdentity:
        identities = self.identities()
        if not identities:
            raise ConfigurationError("No relayer available", "RELAYER_PRIVATE_KEYS is empty")
        return self._choose(identities)

    def release(self, identity: RelayerIdentity) -> None:
        """Return an identity after use. Stateless strategies keep nothing."""

    @abstractmethod
    def _choose(self, identities: list[RelayerIdentity]) -> RelayerIdentity:
        ...


class RandomRelayerPool(RelayerPool):
    """Uniformly random choice per request, no session affinity."""

    def __init__(self, private_keys, rng: random.Random | None = None):
        super().__init__(private_keys)
        self._rng = rng or random.SystemRandom()

    def _choose(self, identities: list[RelayerIdentity]) -> RelayerIdentity:
        return self._rng.choice(identities)


class RoundRobinRelayerPool(RelayerPool):
    def __init__(self, private_keys):
        super().__init__(private_keys)
        self._counter = itertools.count()

    def _choose(self, identities: list[RelayerIdentity]) -> RelayerIdentity:
        with self._lock:
            index = next(self._counter)
        return identities[index % len(identities)]


def build_relayer_pool(private_keys: tuple[str, ...], strategy: str = "random") -> RelayerPool:
    match strategy:
        case "random":
            return RandomRelayerPool(private_keys)
        case "round_robin":
            return RoundRobinRelayerPool(private_keys)
        case _:
            raise ValueError(f"Unknown relayer selection strategy: {strategy!r}")
