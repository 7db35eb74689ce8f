"""
Callback tokens.

Inline-button data is parsed at the boundary into a closed Callback variant,
one namespace per flow. Wire format: ``<prefix><action>[:<arg>[:<arg>]]``,
e.g. ``rent_branch:3`` or ``admin_setst:7:4``; the bare ``back`` token and
anything unrecognized belong to the auth flow.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class Namespace(Enum):
    AUTH = ""
    RENT = "rent_"
    ADMIN = "admin_"
    ACTIVE_RENTS = "ar_"


_PREFIXED = (Namespace.ADMIN, Namespace.RENT, Namespace.ACTIVE_RENTS)


@dataclass(frozen=True)
class Callback:
    namespace: Namespace
    action: str
    args: Tuple[int, ...] = ()

    def arg(self, index: int = 0):
        return self.args[index] if len(self.args) > index else None


def make_token(namespace: Namespace, action: str, *args: int) -> str:
    """Build callback data for a button (Telegram allows up to 64 bytes)"""
    token = namespace.value + action
    if args:
        token += ":" + ":".join(str(a) for a in args)
    return token


def parse_callback(data: str) -> Callback:
    data = (data or "").strip()
    namespace = Namespace.AUTH
    body = data
    for candidate in _PREFIXED:
        if data.startswith(candidate.value):
            namespace = candidate
            body = data[len(candidate.value):]
            break

    action, _, raw_args = body.partition(":")
    args = []
    for part in raw_args.split(":") if raw_args else ():
        if not part.lstrip("-").isdigit():
            # malformed payload: keep the namespace, drop the action
            return Callback(namespace, "")
        args.append(int(part))
    return Callback(namespace, action, tuple(args))
