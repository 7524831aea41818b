"""Boundary types for the TPM transport and authorization collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Any, Protocol, Sequence

from .marshal import PublicKeyMaterial

# Opaque, session-scoped object reference owned by the transport
# (an ESYS_TR for the ESAPI transport).
TransportHandle = Any


@dataclass(frozen=True)
class SensitiveCreate:
    """TPM2B_SENSITIVE_CREATE contents."""

    user_auth: bytes = b""
    data: bytes = b""


@dataclass(frozen=True)
class PcrSelection:
    hash_alg: int
    pcrs: tuple[int, ...] = ()


class DeviceTransport(Protocol):
    def get_supported_algorithms(self) -> AbstractSet[int]:
        ...

    def create_primary(
        self,
        hierarchy: int,
        template: PublicKeyMaterial,
        sensitive: SensitiveCreate,
        outside_info: bytes,
        pcr_selection: Sequence[PcrSelection],
    ) -> TransportHandle:
        ...

    def translate_handle(self, handle: int) -> TransportHandle:
        ...

    def get_tpm_handle(self, transport_handle: TransportHandle) -> int:
        ...

    def load_context_blob(self, data: bytes) -> TransportHandle:
        ...


class Authorizer(Protocol):
    def establish(self, auth_spec: str | None, restricted: bool) -> Any:
        ...
