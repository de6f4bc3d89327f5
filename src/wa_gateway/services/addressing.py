"""Phone address normalization for the protocol's canonical form."""

import re

USER_DOMAIN = "s.whatsapp.net"
GROUP_DOMAIN = "g.us"

_NON_DIGITS = re.compile(r"\D")


def normalize_address(address: str, country_code: str = "62") -> str:
    """Return the canonical user address for a phone number or address.

    Group addresses pass through untouched. For users, the device suffix
    (``:12``) and every non-digit are dropped, and a local leading ``0`` is
    replaced with ``country_code``. Normalizing twice yields the same value.
    """
    local, _, domain = address.strip().partition("@")
    if domain == GROUP_DOMAIN:
        return address.strip()
    local = local.split(":", 1)[0]
    digits = _NON_DIGITS.sub("", local)
    if not digits:
        raise ValueError(f"Address has no digits: {address!r}")
    if digits.startswith("0"):
        digits = country_code + digits[1:]
    return f"{digits}@{USER_DOMAIN}"


def phone_from_identity(identity: str) -> str:
    """Strip the device suffix from a linked identity (``628...:3@s.whatsapp.net``)."""
    local, _, domain = identity.partition("@")
    local = local.split(":", 1)[0]
    return f"{local}@{domain}" if domain else local
