from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from asn1crypto import pem

from tpm2_object_loader import (
    AlgorithmChoice,
    BadBlobError,
    FormatError,
    LoadableKey,
    MalformedContainerError,
    ParentRangeError,
    PrivateKeyMaterial,
    UnsupportedKeyTypeError,
    load_file,
    marshal_private,
    marshal_public,
    parse,
    primary_template,
    serialize,
    serialize_pem,
)
from tpm2_object_loader.constants import (
    TPM2_RH_ENDORSEMENT,
    TPM2_RH_NULL,
    TPM2_RH_OWNER,
    TPM2_RH_PLATFORM,
)
from tpm2_object_loader.tss2_key import OID_SEALED_KEY, TSSPrivKey

LOADABLE_KEY_OID_DER = bytes.fromhex("06066781050a0103")


def _raw_container(**overrides: object) -> bytes:
    fields: dict[str, object] = {
        "type": "2.23.133.10.1.3",
        "parent": TPM2_RH_OWNER,
        "pubkey": marshal_public(primary_template(AlgorithmChoice.RSA_2048)),
        "privkey": marshal_private(PrivateKeyMaterial(b"\x01\x02")),
    }
    fields.update(overrides)
    return TSSPrivKey(fields).dump()


def test_serialize_is_byte_exact() -> None:
    public_blob = marshal_public(primary_template(AlgorithmChoice.RSA_2048))
    private_blob = b"\x00\x02\x01\x02"
    key = LoadableKey(
        parent=TPM2_RH_OWNER,
        public_blob=public_blob,
        private_blob=private_blob,
        empty_auth=True,
    )
    expected_body = (
        LOADABLE_KEY_OID_DER
        + bytes.fromhex("a003" "0101ff")
        + bytes.fromhex("0204" "40000001")
        + b"\x04" + bytes([len(public_blob)]) + public_blob
        + b"\x04\x04" + private_blob
    )
    assert serialize(key) == b"\x30" + bytes([len(expected_body)]) + expected_body


def test_empty_auth_is_omitted_when_false(make_loadable_key: Callable[..., LoadableKey]) -> None:
    key = make_loadable_key(empty_auth=False)
    der = serialize(key)
    assert b"\xa0\x03\x01\x01" not in der
    assert parse(der).empty_auth is False


def test_explicit_false_empty_auth_parses_as_false() -> None:
    key = parse(_raw_container(empty_auth=False))
    assert key.empty_auth is False


@pytest.mark.parametrize(
    "parent",
    [0, TPM2_RH_OWNER, TPM2_RH_NULL, TPM2_RH_ENDORSEMENT, TPM2_RH_PLATFORM, 0x81000001, 0x81FFFFFF],
)
def test_round_trip_for_valid_parents(
    make_loadable_key: Callable[..., LoadableKey], parent: int
) -> None:
    key = make_loadable_key(parent=parent)
    assert parse(serialize(key)) == key
    assert parse(serialize_pem(key)) == key


def test_pem_armor_uses_tss2_label(make_loadable_key: Callable[..., LoadableKey]) -> None:
    armored = serialize_pem(make_loadable_key())
    assert armored.startswith(b"-----BEGIN TSS2 PRIVATE KEY-----")
    label, _headers, _der = pem.unarmor(armored)
    assert label == "TSS2 PRIVATE KEY"


def test_parse_exposes_decoded_materials(
    make_loadable_key: Callable[..., LoadableKey], signing_public, wrapped_private
) -> None:
    key = parse(serialize_pem(make_loadable_key(parent=0x81000001)))
    assert key.public() == signing_public
    assert key.private() == wrapped_private
    assert key.is_persistent_parent
    assert key.parent_hierarchy is None
    assert parse(serialize(make_loadable_key(parent=0))).parent_hierarchy == TPM2_RH_OWNER


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"not der at all",
        b"\x30\x03\x02\x01",
        b"\x04\x02\x00\x00",
        b"\x30\x00",
    ],
)
def test_parse_rejects_non_der_input(data: bytes) -> None:
    with pytest.raises(FormatError):
        parse(data)


def test_parse_rejects_trailing_der_data() -> None:
    with pytest.raises(MalformedContainerError):
        parse(_raw_container() + b"\x00")


def test_parse_rejects_foreign_pem_label() -> None:
    armored = pem.armor("PRIVATE KEY", _raw_container())
    with pytest.raises(MalformedContainerError, match="Expected PEM type"):
        parse(armored)


def test_parse_rejects_other_tss2_key_types() -> None:
    with pytest.raises(UnsupportedKeyTypeError) as excinfo:
        parse(_raw_container(type=OID_SEALED_KEY))
    assert excinfo.value.oid == OID_SEALED_KEY


@pytest.mark.parametrize(
    ("parent", "reason"),
    [
        (2**32, "does not fit in 32 bits"),
        (2**64 + 1, "does not fit in 32 bits"),
        (-1, "negative"),
        (0x01000000, "neither a hierarchy nor a persistent handle"),
        (0x80000001, "neither a hierarchy nor a persistent handle"),
        (0x4000000A, "neither a hierarchy nor a persistent handle"),
    ],
)
def test_parse_rejects_invalid_parents(parent: int, reason: str) -> None:
    with pytest.raises(ParentRangeError, match=reason) as excinfo:
        parse(_raw_container(parent=parent))
    assert excinfo.value.parent == parent


def test_parse_reports_which_blob_is_bad() -> None:
    with pytest.raises(BadBlobError) as public_error:
        parse(_raw_container(pubkey=b"\x00\x05\x00"))
    assert public_error.value.which == "public"

    with pytest.raises(BadBlobError) as private_error:
        parse(_raw_container(privkey=b"\x00\x09"))
    assert private_error.value.which == "private"


def test_serialize_refuses_invalid_keys(make_loadable_key: Callable[..., LoadableKey]) -> None:
    key = make_loadable_key()
    with pytest.raises(ParentRangeError):
        serialize(LoadableKey(parent=2**32, public_blob=key.public_blob, private_blob=key.private_blob))
    with pytest.raises(UnsupportedKeyTypeError):
        serialize(
            LoadableKey(
                parent=0,
                public_blob=key.public_blob,
                private_blob=key.private_blob,
                key_type=OID_SEALED_KEY,
            )
        )


def test_load_file_annotates_errors_with_path(tmp_path: Path) -> None:
    path = tmp_path / "broken.tss"
    path.write_bytes(b"garbage")
    with pytest.raises(FormatError) as excinfo:
        load_file(path)
    assert excinfo.value.path == str(path)
    assert str(path) in str(excinfo.value)


def test_to_dict_describes_key(make_loadable_key: Callable[..., LoadableKey]) -> None:
    described = make_loadable_key(parent=0x81000001).to_dict()
    assert described["parent"] == "0x81000001"
    assert described["empty_auth"] is True
    assert described["public"]["type"] == "rsa"
    assert described["private_size"] == 224


def test_der_with_armor_marker_inside_blob_round_trips(
    make_loadable_key: Callable[..., LoadableKey],
) -> None:
    base = make_loadable_key()
    key = LoadableKey(
        parent=base.parent,
        public_blob=base.public_blob,
        private_blob=marshal_private(PrivateKeyMaterial(b"xx-----BEGIN yy")),
        empty_auth=base.empty_auth,
    )
    der = serialize(key)
    assert b"-----BEGIN" in der
    assert parse(der) == key


def test_pem_with_leading_whitespace_is_accepted(
    make_loadable_key: Callable[..., LoadableKey],
) -> None:
    key = make_loadable_key()
    assert parse(b"\n  " + serialize_pem(key)) == key
