from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from asn1crypto import core, pem

from .constants import (
    LOADABLE_KEY_HIERARCHIES,
    TPM2_RH_OWNER,
    UINT32_MAX,
    is_persistent_handle,
)
from .exceptions import (
    FormatError,
    MalformedContainerError,
    ParentRangeError,
    UnsupportedKeyTypeError,
    format_exception,
)
from .marshal import (
    PrivateKeyMaterial,
    PublicKeyMaterial,
    marshal_private,
    marshal_public,
    unmarshal_private,
    unmarshal_public,
)

OID_LOADABLE_KEY = "2.23.133.10.1.3"
OID_IMPORTABLE_KEY = "2.23.133.10.1.4"
OID_SEALED_KEY = "2.23.133.10.1.5"
PEM_LABEL = "TSS2 PRIVATE KEY"

_logger = logging.getLogger("tpm2_object_loader.tss2_key")


class TSSKeyType(core.ObjectIdentifier):
    _map = {
        OID_LOADABLE_KEY: "loadable_key",
        OID_IMPORTABLE_KEY: "importable_key",
        OID_SEALED_KEY: "sealed_key",
    }


class TSSPrivKey(core.Sequence):
    """
    TSSPrivKey ::= SEQUENCE {
        type        OBJECT IDENTIFIER,
        emptyAuth   [0] EXPLICIT BOOLEAN OPTIONAL,
        parent      INTEGER,
        pubkey      OCTET STRING,
        privkey     OCTET STRING
    }
    """

    _fields = [
        ("type", TSSKeyType),
        ("empty_auth", core.Boolean, {"explicit": 0, "optional": True}),
        ("parent", core.Integer),
        ("pubkey", core.OctetString),
        ("privkey", core.OctetString),
    ]


def validate_parent(parent: int) -> None:
    """
    Reject parents that are not 0, a hierarchy, or a persistent handle.

    Raises ParentRangeError.
    """
    if parent < 0:
        raise ParentRangeError(parent, "negative value")
    if parent > UINT32_MAX:
        raise ParentRangeError(parent, "value does not fit in 32 bits")
    if parent == 0 or parent in LOADABLE_KEY_HIERARCHIES:
        return
    if is_persistent_handle(parent):
        return
    raise ParentRangeError(parent, "neither a hierarchy nor a persistent handle")


@dataclass(frozen=True)
class LoadableKey:
    """A parsed TSS2 PRIVATE KEY container."""

    parent: int
    public_blob: bytes
    private_blob: bytes
    empty_auth: bool = False
    key_type: str = OID_LOADABLE_KEY

    @classmethod
    def from_materials(
        cls,
        public: PublicKeyMaterial,
        private: PrivateKeyMaterial,
        *,
        parent: int = TPM2_RH_OWNER,
        empty_auth: bool = False,
    ) -> "LoadableKey":
        return cls(
            parent=parent,
            public_blob=marshal_public(public),
            private_blob=marshal_private(private),
            empty_auth=empty_auth,
        )

    @property
    def is_persistent_parent(self) -> bool:
        return is_persistent_handle(self.parent)

    @property
    def parent_hierarchy(self) -> int | None:
        """The hierarchy a primary parent must be created under, 0 meaning owner."""
        if self.parent == 0:
            return TPM2_RH_OWNER
        if self.parent in LOADABLE_KEY_HIERARCHIES:
            return self.parent
        return None

    def public(self) -> PublicKeyMaterial:
        return unmarshal_public(self.public_blob)

    def private(self) -> PrivateKeyMaterial:
        return unmarshal_private(self.private_blob)

    def to_dict(self) -> dict[str, object]:
        return {
            "key_type": self.key_type,
            "empty_auth": self.empty_auth,
            "parent": f"{self.parent:#010x}",
            "public": self.public().to_dict(),
            "private_size": len(self.private().buffer),
        }


def _validate(key: LoadableKey) -> None:
    if key.key_type != OID_LOADABLE_KEY:
        raise UnsupportedKeyTypeError(key.key_type)
    validate_parent(key.parent)
    unmarshal_public(key.public_blob)
    unmarshal_private(key.private_blob)


def _der_from(data: bytes) -> bytes:
    armored = data.lstrip()
    if not armored.startswith(b"-----BEGIN"):
        return data
    try:
        label, _headers, der_bytes = pem.unarmor(armored)
    except Exception as exc:
        raise MalformedContainerError(
            f"Invalid PEM armor: {format_exception(exc)}"
        ) from exc
    if label != PEM_LABEL:
        raise MalformedContainerError(
            f"Expected PEM type '{PEM_LABEL}', received '{label}'."
        )
    return der_bytes


def parse(data: bytes) -> LoadableKey:
    """
    Parse a PEM or DER TSS2 PRIVATE KEY.

    Both embedded blobs are decoded eagerly so that a corrupt file fails here
    with BadBlobError rather than later during the key load.
    """
    der_bytes = _der_from(bytes(data))
    try:
        asn1_key = TSSPrivKey.load(der_bytes, strict=True)
        key_type = asn1_key["type"].dotted
        empty_auth = asn1_key["empty_auth"].native
        parent = asn1_key["parent"].native
        public_blob = asn1_key["pubkey"].native
        private_blob = asn1_key["privkey"].native
    except Exception as exc:
        raise MalformedContainerError(
            f"Not a TSS2 private key structure: {format_exception(exc)}"
        ) from exc

    key = LoadableKey(
        parent=parent,
        public_blob=public_blob,
        private_blob=private_blob,
        empty_auth=bool(empty_auth),
        key_type=key_type,
    )
    _validate(key)
    _logger.debug(
        "Parsed TSS2 key parent=%#x empty_auth=%s public=%d bytes private=%d bytes",
        key.parent,
        key.empty_auth,
        len(key.public_blob),
        len(key.private_blob),
    )
    return key


def serialize(key: LoadableKey) -> bytes:
    """Encode as DER. emptyAuth is only written when it is True."""
    _validate(key)
    fields: dict[str, object] = {"type": key.key_type}
    if key.empty_auth:
        fields["empty_auth"] = True
    fields["parent"] = key.parent
    fields["pubkey"] = key.public_blob
    fields["privkey"] = key.private_blob
    return TSSPrivKey(fields).dump()


def serialize_pem(key: LoadableKey) -> bytes:
    return pem.armor(PEM_LABEL, serialize(key))


def load_file(path: str | Path) -> LoadableKey:
    source = Path(path)
    data = source.read_bytes()
    try:
        return parse(data)
    except FormatError as exc:
        exc.path = str(source)
        raise
