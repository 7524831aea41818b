from __future__ import annotations

import os
from dataclasses import dataclass

from .exceptions import ConfigurationError
from .handles import HandleFlags, parse_handle_flags


@dataclass(frozen=True)
class TpmConfig:
    """Runtime configuration for TPM access and object resolution."""

    tcti: str | None = None
    handle_flags: HandleFlags = HandleFlags.ALL_W_NV

    @classmethod
    def from_env(cls) -> "TpmConfig":
        tcti = os.environ.get("TPM2TOOLS_TCTI") or os.environ.get("TCTI") or None
        flags_raw = os.environ.get("TPM_OBJECT_HANDLE_FLAGS")

        if tcti is not None and not tcti.strip():
            raise ConfigurationError("TPM2TOOLS_TCTI must not be blank.")

        handle_flags = HandleFlags.ALL_W_NV
        if flags_raw is not None:
            handle_flags = parse_handle_flags(flags_raw)
            if handle_flags == HandleFlags.NONE:
                raise ConfigurationError(
                    "TPM_OBJECT_HANDLE_FLAGS must allow at least one handle type."
                )

        return cls(tcti=tcti, handle_flags=handle_flags)
