from __future__ import annotations

import enum
import logging
import re

from .constants import (
    TPM2_HT_NV_INDEX,
    TPM2_HT_PCR,
    TPM2_HT_PERMANENT,
    TPM2_HT_PERSISTENT,
    TPM2_HT_TRANSIENT,
    TPM2_MAX_PCRS,
    TPM2_RH_ENDORSEMENT,
    TPM2_RH_LOCKOUT,
    TPM2_RH_NULL,
    TPM2_RH_OWNER,
    TPM2_RH_PLATFORM,
    UINT32_MAX,
    handle_type,
)
from .exceptions import ConfigurationError

_logger = logging.getLogger("tpm2_object_loader.handles")


class HandleFlags(enum.IntFlag):
    """Handle types a caller is willing to accept from a handle token."""

    NONE = 0
    OWNER = 1 << 0
    PLATFORM = 1 << 1
    ENDORSEMENT = 1 << 2
    NULL = 1 << 3
    LOCKOUT = 1 << 4
    TRANSIENT = 1 << 5
    PERSISTENT = 1 << 6
    NV = 1 << 7
    PCR = 1 << 8

    ALL_HIERARCHIES = OWNER | PLATFORM | ENDORSEMENT | NULL | LOCKOUT
    ALL_W_NV = ALL_HIERARCHIES | TRANSIENT | PERSISTENT | NV


# Symbolic names accept any non-empty prefix, so "o", "ow" and "owner" agree.
_HIERARCHY_NAMES: tuple[tuple[str, int, HandleFlags], ...] = (
    ("owner", TPM2_RH_OWNER, HandleFlags.OWNER),
    ("platform", TPM2_RH_PLATFORM, HandleFlags.PLATFORM),
    ("endorsement", TPM2_RH_ENDORSEMENT, HandleFlags.ENDORSEMENT),
    ("null", TPM2_RH_NULL, HandleFlags.NULL),
    ("lockout", TPM2_RH_LOCKOUT, HandleFlags.LOCKOUT),
)

_HIERARCHY_FLAGS: dict[int, HandleFlags] = {
    handle: flag for _name, handle, flag in _HIERARCHY_NAMES
}

_INTEGER_PATTERN = re.compile(r"^(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)$")


def _parse_c_integer(value: str) -> int | None:
    if not _INTEGER_PATTERN.fullmatch(value):
        return None
    if value[:2].lower() == "0x":
        return int(value, 16)
    if value.startswith("0") and len(value) > 1:
        return int(value, 8)
    return int(value, 10)


def _hierarchy_from_name(value: str) -> tuple[int, HandleFlags] | None:
    lowered = value.lower()
    for name, handle, flag in _HIERARCHY_NAMES:
        if name.startswith(lowered):
            return handle, flag
    return None


def _handle_allowed(handle: int, flags: HandleFlags) -> bool:
    htype = handle_type(handle)
    if htype == TPM2_HT_PERMANENT:
        flag = _HIERARCHY_FLAGS.get(handle)
        if flag is None:
            _logger.debug("Unknown permanent handle %#x", handle)
            return False
        return bool(flags & flag)
    if htype == TPM2_HT_TRANSIENT:
        return bool(flags & HandleFlags.TRANSIENT)
    if htype == TPM2_HT_PERSISTENT:
        return bool(flags & HandleFlags.PERSISTENT)
    if htype == TPM2_HT_NV_INDEX:
        return bool(flags & HandleFlags.NV)
    if htype == TPM2_HT_PCR:
        return bool(flags & HandleFlags.PCR) and handle < TPM2_MAX_PCRS
    return False


def parse_handle(value: str, flags: HandleFlags = HandleFlags.ALL_W_NV) -> int | None:
    """
    Interpret a hierarchy name or a numeric handle.

    Numbers follow C conventions: ``0x`` prefix for hex, a leading ``0`` for
    octal, decimal otherwise. Returns None when the token is not a handle or
    names a handle type outside ``flags``.
    """
    if not value:
        return None
    if flags & HandleFlags.NV and flags & HandleFlags.PCR:
        raise ConfigurationError("NV and PCR handle flags cannot be combined.")

    named = _hierarchy_from_name(value)
    if named is not None:
        handle, flag = named
        if not flags & flag:
            _logger.debug("Hierarchy %r is not accepted by flags=%s", value, flags)
            return None
        return handle

    handle = _parse_c_integer(value)
    if handle is None or handle > UINT32_MAX:
        return None
    if not _handle_allowed(handle, flags):
        _logger.debug("Handle %#x is not accepted by flags=%s", handle, flags)
        return None
    return handle


_FLAG_ALIASES: dict[str, HandleFlags] = {
    "none": HandleFlags.NONE,
    "o": HandleFlags.OWNER,
    "owner": HandleFlags.OWNER,
    "p": HandleFlags.PLATFORM,
    "platform": HandleFlags.PLATFORM,
    "e": HandleFlags.ENDORSEMENT,
    "endorsement": HandleFlags.ENDORSEMENT,
    "n": HandleFlags.NULL,
    "null": HandleFlags.NULL,
    "l": HandleFlags.LOCKOUT,
    "lockout": HandleFlags.LOCKOUT,
    "transient": HandleFlags.TRANSIENT,
    "persistent": HandleFlags.PERSISTENT,
    "nv": HandleFlags.NV,
    "pcr": HandleFlags.PCR,
    "hierarchies": HandleFlags.ALL_HIERARCHIES,
    "all_w_nv": HandleFlags.ALL_W_NV,
}


def parse_handle_flags(text: str) -> HandleFlags:
    """Parse a comma separated list such as ``"o,p,persistent"``."""
    flags = HandleFlags.NONE
    for raw in text.split(","):
        name = raw.strip().lower().replace("-", "_")
        if not name:
            continue
        flag = _FLAG_ALIASES.get(name)
        if flag is None:
            available = ", ".join(sorted(_FLAG_ALIASES))
            raise ConfigurationError(
                f"Unknown handle flag '{raw.strip()}'. Available: {available}"
            )
        flags |= flag
    if flags & HandleFlags.NV and flags & HandleFlags.PCR:
        raise ConfigurationError("Handle flags nv and pcr cannot be combined.")
    return flags
