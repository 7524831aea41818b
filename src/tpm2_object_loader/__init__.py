"""Resolve TPM object strings: context files, TSS2 key files and handles."""

from .auth import AuthSession, PasswordAuthorizer
from .config import TpmConfig
from .exceptions import (
    AuthError,
    BadBlobError,
    ConfigurationError,
    DeviceError,
    FormatError,
    MalformedContainerError,
    ParentRangeError,
    ProvisionError,
    ResolveError,
    Tpm2ObjectError,
    UnrecognizedObjectError,
    UnsupportedKeyTypeError,
)
from .handles import HandleFlags, parse_handle, parse_handle_flags
from .logging_utils import configure_logging
from .marshal import (
    EccParameters,
    EccPoint,
    KeyedHashParameters,
    PrivateKeyMaterial,
    PublicKeyMaterial,
    RsaParameters,
    Scheme,
    SymCipherParameters,
    SymmetricDefinition,
    marshal_private,
    marshal_public,
    unmarshal_private,
    unmarshal_public,
)
from .primary import AlgorithmChoice, PrimaryKeyProvisioner, primary_template
from .resolver import LoadedObject, ObjectResolver
from .transport import DeviceTransport, PcrSelection, SensitiveCreate
from .tss2_key import (
    OID_LOADABLE_KEY,
    PEM_LABEL,
    LoadableKey,
    load_file,
    parse,
    serialize,
    serialize_pem,
)

__all__ = [
    "OID_LOADABLE_KEY",
    "PEM_LABEL",
    "AlgorithmChoice",
    "AuthError",
    "AuthSession",
    "BadBlobError",
    "ConfigurationError",
    "DeviceError",
    "DeviceTransport",
    "EccParameters",
    "EccPoint",
    "FormatError",
    "HandleFlags",
    "KeyedHashParameters",
    "LoadableKey",
    "LoadedObject",
    "MalformedContainerError",
    "ObjectResolver",
    "ParentRangeError",
    "PasswordAuthorizer",
    "PcrSelection",
    "PrimaryKeyProvisioner",
    "PrivateKeyMaterial",
    "ProvisionError",
    "PublicKeyMaterial",
    "ResolveError",
    "RsaParameters",
    "Scheme",
    "SensitiveCreate",
    "SymCipherParameters",
    "SymmetricDefinition",
    "Tpm2ObjectError",
    "TpmConfig",
    "UnrecognizedObjectError",
    "UnsupportedKeyTypeError",
    "configure_logging",
    "load_file",
    "marshal_private",
    "marshal_public",
    "parse",
    "parse_handle",
    "parse_handle_flags",
    "primary_template",
    "serialize",
    "serialize_pem",
    "unmarshal_private",
    "unmarshal_public",
]
