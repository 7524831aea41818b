from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from tpm2_object_loader import (
    LoadableKey,
    PrivateKeyMaterial,
    PublicKeyMaterial,
    RsaParameters,
    serialize_pem,
)
from tpm2_object_loader.constants import (
    TPM2_ALG_ECC,
    TPM2_ALG_RSA,
    TPM2_ALG_SHA256,
    TPM2_RH_OWNER,
    TPMA_OBJECT_FIXEDPARENT,
    TPMA_OBJECT_FIXEDTPM,
    TPMA_OBJECT_SENSITIVEDATAORIGIN,
    TPMA_OBJECT_SIGN_ENCRYPT,
    TPMA_OBJECT_USERWITHAUTH,
)

CONTEXT_BLOB = b"\xba\xdc\xc0\xde-serialized-context"
PRIMARY_TPM_HANDLE = 0x80000001


class FakeTransport:
    """Records every DeviceTransport call in order."""

    def __init__(
        self,
        algorithms: tuple[int, ...] = (TPM2_ALG_RSA, TPM2_ALG_ECC),
        *,
        context_blobs: tuple[bytes, ...] = (CONTEXT_BLOB,),
        fail_on: tuple[str, ...] = (),
    ) -> None:
        self.algorithms = frozenset(algorithms)
        self.context_blobs = set(context_blobs)
        self.fail_on = set(fail_on)
        self.calls: list[tuple[str, tuple[object, ...]]] = []
        self._primaries = 0

    def _record(self, name: str, *args: object) -> None:
        self.calls.append((name, args))
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    @property
    def call_names(self) -> list[str]:
        return [name for name, _args in self.calls]

    def get_supported_algorithms(self) -> frozenset[int]:
        self._record("get_supported_algorithms")
        return self.algorithms

    def create_primary(self, hierarchy, template, sensitive, outside_info, pcr_selection):
        self._record("create_primary", hierarchy, template, sensitive, outside_info, pcr_selection)
        self._primaries += 1
        return f"tr:primary:{self._primaries}"

    def translate_handle(self, handle: int) -> str:
        self._record("translate_handle", handle)
        return f"tr:{handle:#x}"

    def get_tpm_handle(self, transport_handle: object) -> int:
        self._record("get_tpm_handle", transport_handle)
        return PRIMARY_TPM_HANDLE

    def load_context_blob(self, data: bytes) -> str:
        self._record("load_context_blob", data)
        if data not in self.context_blobs:
            raise ValueError("bad context magic")
        return "tr:context"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def signing_public() -> PublicKeyMaterial:
    return PublicKeyMaterial(
        type=TPM2_ALG_RSA,
        name_alg=TPM2_ALG_SHA256,
        object_attributes=(
            TPMA_OBJECT_FIXEDTPM
            | TPMA_OBJECT_FIXEDPARENT
            | TPMA_OBJECT_SENSITIVEDATAORIGIN
            | TPMA_OBJECT_USERWITHAUTH
            | TPMA_OBJECT_SIGN_ENCRYPT
        ),
        auth_policy=b"",
        parameters=RsaParameters(key_bits=2048, exponent=0),
        unique=bytes(range(256)),
    )


@pytest.fixture
def wrapped_private() -> PrivateKeyMaterial:
    return PrivateKeyMaterial(buffer=b"\x00\x20" + b"\x5a" * 32 + b"\x01" * 190)


@pytest.fixture
def make_loadable_key(
    signing_public: PublicKeyMaterial,
    wrapped_private: PrivateKeyMaterial,
) -> Callable[..., LoadableKey]:
    def _make(parent: int = TPM2_RH_OWNER, empty_auth: bool = True) -> LoadableKey:
        return LoadableKey.from_materials(
            signing_public,
            wrapped_private,
            parent=parent,
            empty_auth=empty_auth,
        )

    return _make


@pytest.fixture
def write_key_file(
    tmp_path: Path,
    make_loadable_key: Callable[..., LoadableKey],
) -> Callable[..., Path]:
    def _write(parent: int = TPM2_RH_OWNER, name: str = "key.tss") -> Path:
        path = tmp_path / name
        path.write_bytes(serialize_pem(make_loadable_key(parent=parent)))
        return path

    return _write
