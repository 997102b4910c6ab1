"""Version-4 shaped identifiers for client-generated primary keys."""

from __future__ import annotations

import random
import uuid
from typing import Callable


_TEMPLATE = "xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx"


def _pseudo_uuid4(rand: Callable[[int], int] = random.getrandbits) -> str:
    """Build a v4-shaped id from a non-cryptographic source.

    Only the lexical shape is guaranteed: version nibble ``4`` and variant
    nibble in ``{8, 9, a, b}``.
    """
    out = []
    for char in _TEMPLATE:
        if char == "x":
            out.append(format(rand(4), "x"))
        elif char == "y":
            out.append(format((rand(4) & 0x3) | 0x8, "x"))
        else:
            out.append(char)
    return "".join(out)


def generate_uuid() -> str:
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        # os.urandom has no entropy source on this platform
        return _pseudo_uuid4()
