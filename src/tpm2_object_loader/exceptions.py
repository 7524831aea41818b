from __future__ import annotations


def format_exception(exc: BaseException) -> str:
    details = str(exc).strip()
    if not details and getattr(exc, "args", None):
        details = ", ".join(str(a) for a in exc.args if a)
    if details:
        return f"{type(exc).__name__}: {details}"
    return type(exc).__name__


class Tpm2ObjectError(RuntimeError):
    """Base error for object loading."""


class ConfigurationError(Tpm2ObjectError):
    """Configuration is invalid or incomplete."""


class FormatError(Tpm2ObjectError):
    """A key container or embedded blob is malformed."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        context_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.context_error = context_error

    def __str__(self) -> str:
        message = super().__str__()
        if self.context_error is not None:
            message = (
                f"{message} (context load failed: {format_exception(self.context_error)})"
            )
        if self.path is not None:
            return f"{self.path}: {message}"
        return message


class MalformedContainerError(FormatError):
    """The bytes are not a TSS2 private key container."""


class UnsupportedKeyTypeError(FormatError):
    def __init__(self, oid: str, *, path: str | None = None) -> None:
        super().__init__(f"Unsupported TSS2 key type OID: {oid}", path=path)
        self.oid = oid


class ParentRangeError(FormatError):
    def __init__(self, parent: int, reason: str, *, path: str | None = None) -> None:
        super().__init__(f"Invalid parent handle {parent:#x}: {reason}", path=path)
        self.parent = parent


class BadBlobError(FormatError):
    """An embedded TPM2B_PUBLIC or TPM2B_PRIVATE blob failed to decode."""

    def __init__(self, which: str, reason: str, *, path: str | None = None) -> None:
        super().__init__(f"Malformed {which} blob: {reason}", path=path)
        self.which = which


class DeviceError(Tpm2ObjectError):
    """A call into the TPM transport failed."""

    def __init__(self, message: str, *, operation: str) -> None:
        super().__init__(message)
        self.operation = operation


class ProvisionError(DeviceError):
    """Creating the ephemeral primary key failed."""


class AuthError(Tpm2ObjectError):
    """The authorization value or session could not be established."""


class ResolveError(Tpm2ObjectError):
    """An object identifier could not be resolved."""


class UnrecognizedObjectError(ResolveError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f'Cannot make sense of object context "{identifier}"')
        self.identifier = identifier
