from __future__ import annotations

import logging
from typing import AbstractSet, Any, Sequence

from tpm2_pytss import (
    ESAPI,
    ESYS_TR,
    TPM2_CAP,
    TPM2B_AUTH,
    TPM2B_DATA,
    TPM2B_PUBLIC,
    TPM2B_SENSITIVE_CREATE,
    TPM2B_SENSITIVE_DATA,
    TPML_PCR_SELECTION,
    TPMS_CONTEXT,
    TPMS_SENSITIVE_CREATE,
)

from .config import TpmConfig
from .constants import (
    TPM2_RH_ENDORSEMENT,
    TPM2_RH_LOCKOUT,
    TPM2_RH_NULL,
    TPM2_RH_OWNER,
    TPM2_RH_PLATFORM,
)
from .exceptions import DeviceError, format_exception
from .marshal import PublicKeyMaterial, algorithm_name, marshal_public
from .transport import PcrSelection, SensitiveCreate

_logger = logging.getLogger("tpm2_object_loader.esys")

# (TPM2_MAX_CAP_BUFFER - capability - count) / sizeof(TPMS_ALG_PROPERTY)
_MAX_CAP_ALGS = 169

_HIERARCHY_TRS: dict[int, ESYS_TR] = {
    TPM2_RH_OWNER: ESYS_TR.OWNER,
    TPM2_RH_NULL: ESYS_TR.NULL,
    TPM2_RH_LOCKOUT: ESYS_TR.LOCKOUT,
    TPM2_RH_ENDORSEMENT: ESYS_TR.ENDORSEMENT,
    TPM2_RH_PLATFORM: ESYS_TR.PLATFORM,
}


def _pcr_selection(selections: Sequence[PcrSelection]) -> TPML_PCR_SELECTION:
    if not selections:
        return TPML_PCR_SELECTION()
    spec = "+".join(
        f"{algorithm_name(sel.hash_alg)}:{','.join(str(pcr) for pcr in sel.pcrs)}"
        for sel in selections
    )
    return TPML_PCR_SELECTION.parse(spec)


class EsysTransport:
    """
    DeviceTransport backed by tpm2-pytss ESAPI.

    Objects created or loaded through this transport stay resident until
    flush() or close().
    """

    def __init__(self, config: TpmConfig) -> None:
        self._config = config
        self._esapi: ESAPI | None = None

    def __enter__(self) -> "EsysTransport":
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def esapi(self) -> ESAPI:
        if self._esapi is None:
            raise DeviceError("ESAPI context is not open.", operation="open")
        return self._esapi

    def open(self) -> None:
        if self._esapi is not None:
            _logger.debug("ESAPI context already open.")
            return
        try:
            _logger.info("Opening ESAPI context tcti=%s", self._config.tcti or "<default>")
            self._esapi = ESAPI(self._config.tcti)
        except Exception as exc:
            _logger.exception("Failed to open ESAPI context.")
            raise DeviceError(
                f"Failed to open ESAPI context: {format_exception(exc)}",
                operation="open",
            ) from exc

    def close(self) -> None:
        if self._esapi is None:
            _logger.debug("ESAPI context already closed.")
            return
        self._esapi.close()
        self._esapi = None
        _logger.info("ESAPI context closed.")

    def get_supported_algorithms(self) -> AbstractSet[int]:
        algorithms: set[int] = set()
        prop = 0
        more_data = True
        while more_data:
            more_data, capability = self.esapi.get_capability(
                TPM2_CAP.ALGS, prop, _MAX_CAP_ALGS
            )
            batch = [int(entry.alg) for entry in capability.data.algorithms]
            if not batch:
                break
            algorithms.update(batch)
            prop = max(batch) + 1
        _logger.debug("TPM reports %d algorithms", len(algorithms))
        return frozenset(algorithms)

    def create_primary(
        self,
        hierarchy: int,
        template: PublicKeyMaterial,
        sensitive: SensitiveCreate,
        outside_info: bytes,
        pcr_selection: Sequence[PcrSelection],
    ) -> ESYS_TR:
        in_public, _offset = TPM2B_PUBLIC.unmarshal(marshal_public(template))
        in_sensitive = TPM2B_SENSITIVE_CREATE(
            TPMS_SENSITIVE_CREATE(
                userAuth=TPM2B_AUTH(sensitive.user_auth),
                data=TPM2B_SENSITIVE_DATA(sensitive.data),
            )
        )
        handle, _public, _creation_data, _digest, _ticket = self.esapi.create_primary(
            in_sensitive,
            in_public,
            primary_handle=self._hierarchy_tr(hierarchy),
            outside_info=TPM2B_DATA(outside_info),
            creation_pcr=_pcr_selection(pcr_selection),
            session1=ESYS_TR.PASSWORD,
        )
        return handle

    def translate_handle(self, handle: int) -> ESYS_TR:
        hierarchy_tr = _HIERARCHY_TRS.get(handle)
        if hierarchy_tr is not None:
            return hierarchy_tr
        return self.esapi.tr_from_tpmpublic(handle)

    def get_tpm_handle(self, transport_handle: ESYS_TR) -> int:
        return int(self.esapi.tr_get_tpm_handle(transport_handle))

    def load_context_blob(self, data: bytes) -> ESYS_TR:
        context = TPMS_CONTEXT.from_tools(data)
        return self.esapi.context_load(context)

    def flush(self, transport_handle: ESYS_TR) -> None:
        self.esapi.flush_context(transport_handle)
        _logger.debug("Flushed transient object %s", transport_handle)

    @staticmethod
    def _hierarchy_tr(hierarchy: int) -> ESYS_TR:
        try:
            return _HIERARCHY_TRS[hierarchy]
        except KeyError as exc:
            raise ValueError(f"Not a hierarchy handle: {hierarchy:#x}") from exc
