from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, TypeVar

from . import tss2_key
from .auth import PasswordAuthorizer
from .config import TpmConfig
from .constants import TPM2_TRANSIENT_FIRST
from .exceptions import (
    AuthError,
    DeviceError,
    FormatError,
    UnrecognizedObjectError,
    format_exception,
)
from .handles import HandleFlags, parse_handle
from .marshal import PrivateKeyMaterial, PublicKeyMaterial
from .primary import PrimaryKeyProvisioner
from .transport import Authorizer, DeviceTransport, TransportHandle

_logger = logging.getLogger("tpm2_object_loader.resolver")

_T = TypeVar("_T")

STRATEGY_CONTEXT_FILE = "context-file"
STRATEGY_LOADABLE_KEY = "loadable-key"
STRATEGY_HANDLE = "handle"


@dataclass(frozen=True)
class LoadedObject:
    """
    An object reference ready for use with the transport.

    For TSS2 key files ``handle``/``transport_handle`` refer to the parent and
    ``public``/``private`` carry the key to load under it. When
    ``ephemeral_parent`` is set the parent is a primary created for this
    resolution; it is released by flushing the transport session.
    """

    handle: int
    transport_handle: TransportHandle
    strategy: str
    source_path: str | None = None
    auth_session: Any = None
    public: PublicKeyMaterial | None = None
    private: PrivateKeyMaterial | None = None
    empty_auth: bool = False
    ephemeral_parent: bool = False


@dataclass
class _Attempt:
    identifier: str
    flags: HandleFlags
    contents: bytes | None = None
    context_error: Exception | None = None


def _read_candidate_file(identifier: str) -> bytes | None:
    try:
        with open(identifier, "rb") as handle:
            return handle.read()
    except (OSError, ValueError) as exc:
        _logger.debug("Identifier is not a readable file: %s", format_exception(exc))
        return None


class ObjectResolver:
    """
    Resolves an object string to a LoadedObject.

    Strategies run in a fixed order and the first one returning an object
    wins. A strategy returns None when the identifier cannot be read its way
    and raises once it has committed to an interpretation.
    """

    def __init__(
        self,
        transport: DeviceTransport,
        *,
        authorizer: Authorizer | None = None,
        provisioner: PrimaryKeyProvisioner | None = None,
        config: TpmConfig | None = None,
    ) -> None:
        self._transport = transport
        self._authorizer = authorizer or PasswordAuthorizer()
        self._provisioner = provisioner or PrimaryKeyProvisioner(transport)
        self._config = config or TpmConfig()

    @property
    def strategies(self) -> tuple[Callable[[_Attempt], LoadedObject | None], ...]:
        return (
            self._from_context_file,
            self._from_loadable_key_file,
            self._from_handle_token,
        )

    def resolve(
        self,
        identifier: str,
        *,
        want_auth: bool = False,
        auth_spec: str | None = None,
        restricted_session: bool = False,
        handle_flags: HandleFlags | None = None,
    ) -> LoadedObject:
        session = None
        if want_auth:
            session = self._establish_auth(auth_spec, restricted_session)

        attempt = _Attempt(
            identifier=identifier,
            flags=self._config.handle_flags if handle_flags is None else handle_flags,
            contents=_read_candidate_file(identifier) if identifier else None,
        )
        for strategy in self.strategies:
            loaded = strategy(attempt)
            if loaded is None:
                continue
            _logger.info(
                "Resolved object identifier=%s strategy=%s handle=%#x",
                identifier,
                loaded.strategy,
                loaded.handle,
            )
            if session is not None:
                loaded = replace(loaded, auth_session=session)
            return loaded

        _logger.error('Cannot make sense of object context "%s"', identifier)
        raise UnrecognizedObjectError(identifier)

    def load(self, identifier: str, flags: HandleFlags | None = None) -> LoadedObject:
        return self.resolve(identifier, handle_flags=flags)

    def load_with_auth(
        self,
        identifier: str,
        auth_spec: str | None,
        *,
        restricted_session: bool = False,
        flags: HandleFlags | None = None,
    ) -> LoadedObject:
        return self.resolve(
            identifier,
            want_auth=True,
            auth_spec=auth_spec,
            restricted_session=restricted_session,
            handle_flags=flags,
        )

    def _establish_auth(self, auth_spec: str | None, restricted: bool) -> Any:
        try:
            return self._authorizer.establish(auth_spec, restricted)
        except AuthError:
            _logger.error("Unable to establish authorization restricted=%s", restricted)
            raise
        except Exception as exc:
            _logger.exception("Unable to establish authorization restricted=%s", restricted)
            raise AuthError(
                f"Unable to establish authorization: {format_exception(exc)}"
            ) from exc

    def _device_call(self, operation: str, func: Callable[..., _T], *args: Any) -> _T:
        try:
            return func(*args)
        except Exception as exc:
            _logger.exception("Transport call failed operation=%s", operation)
            raise DeviceError(
                f"Transport call {operation} failed: {format_exception(exc)}",
                operation=operation,
            ) from exc

    def _from_context_file(self, attempt: _Attempt) -> LoadedObject | None:
        if attempt.contents is None:
            return None
        try:
            transport_handle = self._transport.load_context_blob(attempt.contents)
        except Exception as exc:
            _logger.debug(
                "Not a loadable context file path=%s: %s",
                attempt.identifier,
                format_exception(exc),
            )
            attempt.context_error = exc
            return None
        return LoadedObject(
            handle=TPM2_TRANSIENT_FIRST,
            transport_handle=transport_handle,
            strategy=STRATEGY_CONTEXT_FILE,
            source_path=attempt.identifier,
        )

    def _from_loadable_key_file(self, attempt: _Attempt) -> LoadedObject | None:
        if attempt.contents is None:
            return None
        try:
            key = tss2_key.parse(attempt.contents)
        except FormatError as exc:
            exc.path = attempt.identifier
            exc.context_error = attempt.context_error
            _logger.error("File is neither a context nor a TSS2 private key: %s", exc)
            raise

        hierarchy = key.parent_hierarchy
        if hierarchy is None:
            _logger.debug("Using persistent parent %#x", key.parent)
            transport_handle = self._device_call(
                "translate_handle", self._transport.translate_handle, key.parent
            )
            handle = key.parent
        else:
            _logger.debug("Provisioning primary parent under hierarchy %#x", hierarchy)
            transport_handle = self._provisioner.provision(hierarchy)
            handle = self._device_call(
                "get_tpm_handle", self._transport.get_tpm_handle, transport_handle
            )

        return LoadedObject(
            handle=handle,
            transport_handle=transport_handle,
            strategy=STRATEGY_LOADABLE_KEY,
            source_path=attempt.identifier,
            public=key.public(),
            private=key.private(),
            empty_auth=key.empty_auth,
            ephemeral_parent=hierarchy is not None,
        )

    def _from_handle_token(self, attempt: _Attempt) -> LoadedObject | None:
        if attempt.contents is not None:
            return None
        handle = parse_handle(attempt.identifier, attempt.flags)
        if handle is None:
            return None
        transport_handle = self._device_call(
            "translate_handle", self._transport.translate_handle, handle
        )
        return LoadedObject(
            handle=handle,
            transport_handle=transport_handle,
            strategy=STRATEGY_HANDLE,
        )
