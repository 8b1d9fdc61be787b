"""Round-robin API key selection."""

import itertools
from typing import Iterable

from .exceptions import ConfigurationError


class KeyPool:
    """Hands out API keys in rotation.

    The pool is owned by whoever builds the verifier and is passed down to
    the adapters that need it, so two batches using separate pools never
    share a rotation counter. ``next()`` has no await point, which makes it
    safe to call from concurrent tasks on one event loop.
    """

    def __init__(self, keys: Iterable[str]):
        self._keys = [k.strip() for k in keys if k and k.strip()]
        self._cycle = itertools.cycle(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __bool__(self) -> bool:
        return bool(self._keys)

    def next(self) -> str:
        if not self._keys:
            raise ConfigurationError("No API keys configured for this pool")
        return next(self._cycle)
