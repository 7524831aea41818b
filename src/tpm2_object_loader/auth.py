from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .constants import TPM2_SHA512_DIGEST_SIZE
from .exceptions import AuthError, format_exception

_logger = logging.getLogger("tpm2_object_loader.auth")

_POLICY_PREFIXES = ("session:", "pcr:")


@dataclass(frozen=True)
class AuthSession:
    """A password authorization to present with the resolved object."""

    kind: str
    auth_value: bytes = b""

    def __repr__(self) -> str:
        return f"AuthSession(kind={self.kind!r}, auth_value=<{len(self.auth_value)} bytes>)"


def _decode_hex(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        raise AuthError(f"Invalid hex authorization value: {format_exception(exc)}") from exc


def _read_auth_file(path: str) -> bytes:
    if path == "-":
        raise AuthError("Reading an authorization value from stdin is not supported.")
    source = Path(path)
    try:
        return source.read_bytes()
    except OSError as exc:
        raise AuthError(
            f"Unable to read authorization file {source}: {format_exception(exc)}"
        ) from exc


class PasswordAuthorizer:
    """
    Turns an auth spec into a password session.

    Accepted forms:
    - ``None`` or ``""``: empty password
    - ``str:<value>`` or plain text: UTF-8 bytes of the value
    - ``hex:<value>``: hex-decoded bytes
    - ``file:<path>``: the raw contents of a file

    Policy sessions (``session:`` and ``pcr:``) are rejected.
    """

    def establish(self, auth_spec: str | None, restricted: bool = False) -> AuthSession:
        if not auth_spec:
            return AuthSession(kind="password")

        if auth_spec.startswith(_POLICY_PREFIXES):
            if restricted:
                raise AuthError(
                    f"Only password authorization is allowed here, got: {auth_spec.split(':', 1)[0]}"
                )
            raise AuthError(
                f"Policy session authorization is not supported: {auth_spec.split(':', 1)[0]}"
            )

        if auth_spec.startswith("hex:"):
            value = _decode_hex(auth_spec[len("hex:"):])
        elif auth_spec.startswith("file:"):
            value = _read_auth_file(auth_spec[len("file:"):])
        elif auth_spec.startswith("str:"):
            value = auth_spec[len("str:"):].encode("utf-8")
        else:
            value = auth_spec.encode("utf-8")

        if len(value) > TPM2_SHA512_DIGEST_SIZE:
            raise AuthError(
                f"Authorization value is {len(value)} bytes, maximum is {TPM2_SHA512_DIGEST_SIZE}."
            )
        _logger.debug("Established password session restricted=%s", restricted)
        return AuthSession(kind="password", auth_value=value)
