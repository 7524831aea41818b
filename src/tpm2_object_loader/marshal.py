from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Callable, Union

from .constants import (
    TPM2_ALG_AES,
    TPM2_ALG_CFB,
    TPM2_ALG_ECC,
    TPM2_ALG_ECDAA,
    TPM2_ALG_ECDH,
    TPM2_ALG_ECDSA,
    TPM2_ALG_ECMQV,
    TPM2_ALG_ECSCHNORR,
    TPM2_ALG_HMAC,
    TPM2_ALG_KDF1_SP800_56A,
    TPM2_ALG_KDF1_SP800_108,
    TPM2_ALG_KDF2,
    TPM2_ALG_KEYEDHASH,
    TPM2_ALG_MGF1,
    TPM2_ALG_NULL,
    TPM2_ALG_OAEP,
    TPM2_ALG_RSA,
    TPM2_ALG_RSAES,
    TPM2_ALG_RSAPSS,
    TPM2_ALG_RSASSA,
    TPM2_ALG_SHA1,
    TPM2_ALG_SHA256,
    TPM2_ALG_SHA384,
    TPM2_ALG_SHA512,
    TPM2_ALG_SM2,
    TPM2_ALG_SYMCIPHER,
    TPM2_ALG_XOR,
    TPM2_MAX_ECC_KEY_BYTES,
    TPM2_MAX_PRIVATE_BUFFER,
    TPM2_MAX_RSA_KEY_BYTES,
    TPM2_SHA512_DIGEST_SIZE,
)
from .exceptions import BadBlobError

PUBLIC = "public"
PRIVATE = "private"

_ALG_NAMES: dict[int, str] = {
    TPM2_ALG_RSA: "rsa",
    TPM2_ALG_ECC: "ecc",
    TPM2_ALG_KEYEDHASH: "keyedhash",
    TPM2_ALG_SYMCIPHER: "symcipher",
    TPM2_ALG_SHA1: "sha1",
    TPM2_ALG_SHA256: "sha256",
    TPM2_ALG_SHA384: "sha384",
    TPM2_ALG_SHA512: "sha512",
    TPM2_ALG_AES: "aes",
    TPM2_ALG_CFB: "cfb",
    TPM2_ALG_NULL: "null",
}

# Schemes whose details carry a hash algorithm, and those with a second field.
_HASH_SCHEMES = frozenset(
    {
        TPM2_ALG_RSASSA,
        TPM2_ALG_RSAPSS,
        TPM2_ALG_OAEP,
        TPM2_ALG_ECDSA,
        TPM2_ALG_ECDH,
        TPM2_ALG_ECDAA,
        TPM2_ALG_SM2,
        TPM2_ALG_ECSCHNORR,
        TPM2_ALG_ECMQV,
        TPM2_ALG_MGF1,
        TPM2_ALG_KDF1_SP800_56A,
        TPM2_ALG_KDF2,
        TPM2_ALG_KDF1_SP800_108,
        TPM2_ALG_HMAC,
        TPM2_ALG_XOR,
    }
)
_EXTRA_FIELD_SCHEMES = frozenset({TPM2_ALG_ECDAA, TPM2_ALG_XOR})
_EMPTY_SCHEMES = frozenset({TPM2_ALG_NULL, TPM2_ALG_RSAES})


def algorithm_name(alg_id: int) -> str:
    return _ALG_NAMES.get(alg_id, f"{alg_id:#06x}")


@dataclass(frozen=True)
class SymmetricDefinition:
    """TPMT_SYM_DEF_OBJECT."""

    algorithm: int = TPM2_ALG_NULL
    key_bits: int = 0
    mode: int = TPM2_ALG_NULL


@dataclass(frozen=True)
class Scheme:
    """
    A TPMT_*_SCHEME or TPMT_KDF_SCHEME selector with its details.

    ``extra`` holds the ECDAA commit count or the XOR kdf algorithm.
    """

    scheme: int = TPM2_ALG_NULL
    hash_alg: int | None = None
    extra: int | None = None


@dataclass(frozen=True)
class RsaParameters:
    symmetric: SymmetricDefinition = field(default_factory=SymmetricDefinition)
    scheme: Scheme = field(default_factory=Scheme)
    key_bits: int = 2048
    exponent: int = 0


@dataclass(frozen=True)
class EccParameters:
    symmetric: SymmetricDefinition = field(default_factory=SymmetricDefinition)
    scheme: Scheme = field(default_factory=Scheme)
    curve_id: int = 0
    kdf: Scheme = field(default_factory=Scheme)


@dataclass(frozen=True)
class KeyedHashParameters:
    scheme: Scheme = field(default_factory=Scheme)


@dataclass(frozen=True)
class SymCipherParameters:
    symmetric: SymmetricDefinition = field(default_factory=SymmetricDefinition)


@dataclass(frozen=True)
class EccPoint:
    x: bytes = b""
    y: bytes = b""


PublicParameters = Union[
    RsaParameters, EccParameters, KeyedHashParameters, SymCipherParameters
]


@dataclass(frozen=True)
class PublicKeyMaterial:
    """Decoded TPMT_PUBLIC area of a TPM2B_PUBLIC blob."""

    type: int
    name_alg: int
    object_attributes: int
    auth_policy: bytes
    parameters: PublicParameters
    unique: bytes | EccPoint = b""

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "type": algorithm_name(self.type),
            "name_alg": algorithm_name(self.name_alg),
            "object_attributes": f"{self.object_attributes:#010x}",
            "auth_policy": self.auth_policy.hex(),
        }
        if isinstance(self.parameters, RsaParameters):
            payload["rsa_key_bits"] = self.parameters.key_bits
            payload["rsa_exponent"] = self.parameters.exponent
        elif isinstance(self.parameters, EccParameters):
            payload["ecc_curve_id"] = self.parameters.curve_id
        if isinstance(self.unique, EccPoint):
            payload["unique"] = {"x": self.unique.x.hex(), "y": self.unique.y.hex()}
        else:
            payload["unique"] = self.unique.hex()
        return payload


@dataclass(frozen=True)
class PrivateKeyMaterial:
    """Opaque TPM2B_PRIVATE buffer, encrypted under the parent's storage key."""

    buffer: bytes

    def __repr__(self) -> str:
        return f"PrivateKeyMaterial(<{len(self.buffer)} bytes>)"


class _Reader:
    def __init__(self, data: bytes, which: str) -> None:
        self._data = data
        self._offset = 0
        self._which = which

    def fail(self, reason: str) -> BadBlobError:
        return BadBlobError(self._which, f"{reason} (offset {self._offset})")

    def take(self, size: int, what: str) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise self.fail(
                f"truncated {what}: need {size} bytes, "
                f"{len(self._data) - self._offset} available"
            )
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def u16(self, what: str) -> int:
        return struct.unpack(">H", self.take(2, what))[0]

    def u32(self, what: str) -> int:
        return struct.unpack(">I", self.take(4, what))[0]

    def sized(self, what: str, max_size: int) -> bytes:
        size = self.u16(f"{what} size")
        if size > max_size:
            raise self.fail(f"{what} size {size} exceeds maximum {max_size}")
        return self.take(size, what)

    def remaining(self) -> int:
        return len(self._data) - self._offset


def _u16(value: int) -> bytes:
    return struct.pack(">H", value)


def _u32(value: int) -> bytes:
    return struct.pack(">I", value)


def _sized(value: bytes, what: str, max_size: int) -> bytes:
    if len(value) > max_size:
        raise ValueError(f"{what} is {len(value)} bytes, maximum is {max_size}.")
    return _u16(len(value)) + value


def _read_symmetric(reader: _Reader) -> SymmetricDefinition:
    algorithm = reader.u16("symmetric.algorithm")
    if algorithm == TPM2_ALG_NULL:
        return SymmetricDefinition()
    key_bits = reader.u16("symmetric.keyBits")
    mode = reader.u16("symmetric.mode")
    return SymmetricDefinition(algorithm=algorithm, key_bits=key_bits, mode=mode)


def _write_symmetric(symmetric: SymmetricDefinition) -> bytes:
    if symmetric.algorithm == TPM2_ALG_NULL:
        return _u16(TPM2_ALG_NULL)
    return _u16(symmetric.algorithm) + _u16(symmetric.key_bits) + _u16(symmetric.mode)


def _read_scheme(reader: _Reader, what: str) -> Scheme:
    scheme = reader.u16(f"{what}.scheme")
    if scheme in _EMPTY_SCHEMES:
        return Scheme(scheme=scheme)
    if scheme not in _HASH_SCHEMES:
        raise reader.fail(f"unsupported {what} {scheme:#06x}")
    hash_alg = reader.u16(f"{what}.hashAlg")
    extra = reader.u16(f"{what}.details") if scheme in _EXTRA_FIELD_SCHEMES else None
    return Scheme(scheme=scheme, hash_alg=hash_alg, extra=extra)


def _write_scheme(scheme: Scheme, what: str) -> bytes:
    if scheme.scheme in _EMPTY_SCHEMES:
        return _u16(scheme.scheme)
    if scheme.scheme not in _HASH_SCHEMES:
        raise ValueError(f"Unsupported {what} {scheme.scheme:#06x}.")
    if scheme.hash_alg is None:
        raise ValueError(f"{what} {scheme.scheme:#06x} requires hash_alg.")
    encoded = _u16(scheme.scheme) + _u16(scheme.hash_alg)
    if scheme.scheme in _EXTRA_FIELD_SCHEMES:
        if scheme.extra is None:
            raise ValueError(f"{what} {scheme.scheme:#06x} requires extra.")
        encoded += _u16(scheme.extra)
    return encoded


def _read_rsa(reader: _Reader) -> tuple[RsaParameters, bytes]:
    parameters = RsaParameters(
        symmetric=_read_symmetric(reader),
        scheme=_read_scheme(reader, "rsa scheme"),
        key_bits=reader.u16("rsa keyBits"),
        exponent=reader.u32("rsa exponent"),
    )
    return parameters, reader.sized("unique.rsa", TPM2_MAX_RSA_KEY_BYTES)


def _read_ecc(reader: _Reader) -> tuple[EccParameters, EccPoint]:
    parameters = EccParameters(
        symmetric=_read_symmetric(reader),
        scheme=_read_scheme(reader, "ecc scheme"),
        curve_id=reader.u16("ecc curveID"),
        kdf=_read_scheme(reader, "kdf scheme"),
    )
    point = EccPoint(
        x=reader.sized("unique.ecc.x", TPM2_MAX_ECC_KEY_BYTES),
        y=reader.sized("unique.ecc.y", TPM2_MAX_ECC_KEY_BYTES),
    )
    return parameters, point


def _read_keyedhash(reader: _Reader) -> tuple[KeyedHashParameters, bytes]:
    parameters = KeyedHashParameters(scheme=_read_scheme(reader, "keyedhash scheme"))
    return parameters, reader.sized("unique.keyedHash", TPM2_SHA512_DIGEST_SIZE)


def _read_symcipher(reader: _Reader) -> tuple[SymCipherParameters, bytes]:
    parameters = SymCipherParameters(symmetric=_read_symmetric(reader))
    return parameters, reader.sized("unique.sym", TPM2_SHA512_DIGEST_SIZE)


_PARAMETER_READERS: dict[int, Callable[[_Reader], tuple[PublicParameters, bytes | EccPoint]]] = {
    TPM2_ALG_RSA: _read_rsa,
    TPM2_ALG_ECC: _read_ecc,
    TPM2_ALG_KEYEDHASH: _read_keyedhash,
    TPM2_ALG_SYMCIPHER: _read_symcipher,
}


def _write_parameters(public: PublicKeyMaterial) -> bytes:
    parameters = public.parameters
    unique = public.unique
    if public.type == TPM2_ALG_RSA and isinstance(parameters, RsaParameters):
        if isinstance(unique, EccPoint):
            raise ValueError("RSA public area requires a bytes unique field.")
        return (
            _write_symmetric(parameters.symmetric)
            + _write_scheme(parameters.scheme, "rsa scheme")
            + _u16(parameters.key_bits)
            + _u32(parameters.exponent)
            + _sized(unique, "unique.rsa", TPM2_MAX_RSA_KEY_BYTES)
        )
    if public.type == TPM2_ALG_ECC and isinstance(parameters, EccParameters):
        point = unique if isinstance(unique, EccPoint) else EccPoint()
        if not isinstance(unique, EccPoint) and unique:
            raise ValueError("ECC public area requires an EccPoint unique field.")
        return (
            _write_symmetric(parameters.symmetric)
            + _write_scheme(parameters.scheme, "ecc scheme")
            + _u16(parameters.curve_id)
            + _write_scheme(parameters.kdf, "kdf scheme")
            + _sized(point.x, "unique.ecc.x", TPM2_MAX_ECC_KEY_BYTES)
            + _sized(point.y, "unique.ecc.y", TPM2_MAX_ECC_KEY_BYTES)
        )
    if isinstance(unique, EccPoint):
        raise ValueError("Only ECC public areas carry an EccPoint unique field.")
    if public.type == TPM2_ALG_KEYEDHASH and isinstance(parameters, KeyedHashParameters):
        return _write_scheme(parameters.scheme, "keyedhash scheme") + _sized(
            unique, "unique.keyedHash", TPM2_SHA512_DIGEST_SIZE
        )
    if public.type == TPM2_ALG_SYMCIPHER and isinstance(parameters, SymCipherParameters):
        return _write_symmetric(parameters.symmetric) + _sized(
            unique, "unique.sym", TPM2_SHA512_DIGEST_SIZE
        )
    raise ValueError(
        f"Parameters {type(parameters).__name__} do not match public type "
        f"{algorithm_name(public.type)}."
    )


def marshal_public(public: PublicKeyMaterial) -> bytes:
    """Encode a public area as a size-prefixed TPM2B_PUBLIC."""
    area = (
        _u16(public.type)
        + _u16(public.name_alg)
        + _u32(public.object_attributes)
        + _sized(public.auth_policy, "authPolicy", TPM2_SHA512_DIGEST_SIZE)
        + _write_parameters(public)
    )
    return _u16(len(area)) + area


def unmarshal_public(data: bytes) -> PublicKeyMaterial:
    """
    Decode a TPM2B_PUBLIC blob.

    The declared size must cover the public area exactly and the buffer may
    not carry trailing bytes. Any mismatch raises BadBlobError("public").
    """
    reader = _Reader(bytes(data), PUBLIC)
    size = reader.u16("TPM2B_PUBLIC size")
    if size == 0:
        raise reader.fail("empty public area")
    if size != reader.remaining():
        raise reader.fail(
            f"declared size {size} does not match {reader.remaining()} remaining bytes"
        )
    obj_type = reader.u16("type")
    read_parameters = _PARAMETER_READERS.get(obj_type)
    if read_parameters is None:
        raise reader.fail(f"unsupported public type {obj_type:#06x}")
    name_alg = reader.u16("nameAlg")
    object_attributes = reader.u32("objectAttributes")
    auth_policy = reader.sized("authPolicy", TPM2_SHA512_DIGEST_SIZE)
    parameters, unique = read_parameters(reader)
    if reader.remaining():
        raise reader.fail(f"{reader.remaining()} trailing bytes after public area")
    return PublicKeyMaterial(
        type=obj_type,
        name_alg=name_alg,
        object_attributes=object_attributes,
        auth_policy=auth_policy,
        parameters=parameters,
        unique=unique,
    )


def marshal_private(private: PrivateKeyMaterial) -> bytes:
    return _sized(private.buffer, "TPM2B_PRIVATE", TPM2_MAX_PRIVATE_BUFFER)


def unmarshal_private(data: bytes) -> PrivateKeyMaterial:
    reader = _Reader(bytes(data), PRIVATE)
    buffer = reader.sized("TPM2B_PRIVATE", TPM2_MAX_PRIVATE_BUFFER)
    if reader.remaining():
        raise reader.fail(f"{reader.remaining()} trailing bytes after private buffer")
    return PrivateKeyMaterial(buffer=buffer)
