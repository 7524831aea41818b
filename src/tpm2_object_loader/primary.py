from __future__ import annotations

import enum
import logging

from .constants import (
    TPM2_ALG_AES,
    TPM2_ALG_CFB,
    TPM2_ALG_ECC,
    TPM2_ALG_NULL,
    TPM2_ALG_RSA,
    TPM2_ALG_SHA256,
    TPM2_ECC_NIST_P256,
    TPM2_RH_OWNER,
    TPMA_OBJECT_DECRYPT,
    TPMA_OBJECT_FIXEDPARENT,
    TPMA_OBJECT_FIXEDTPM,
    TPMA_OBJECT_NODA,
    TPMA_OBJECT_RESTRICTED,
    TPMA_OBJECT_SENSITIVEDATAORIGIN,
    TPMA_OBJECT_USERWITHAUTH,
)
from .exceptions import ProvisionError, format_exception
from .marshal import (
    EccParameters,
    EccPoint,
    PublicKeyMaterial,
    RsaParameters,
    Scheme,
    SymmetricDefinition,
)
from .transport import DeviceTransport, SensitiveCreate, TransportHandle

_logger = logging.getLogger("tpm2_object_loader.primary")

PRIMARY_OBJECT_ATTRIBUTES = (
    TPMA_OBJECT_USERWITHAUTH
    | TPMA_OBJECT_RESTRICTED
    | TPMA_OBJECT_DECRYPT
    | TPMA_OBJECT_NODA
    | TPMA_OBJECT_FIXEDTPM
    | TPMA_OBJECT_FIXEDPARENT
    | TPMA_OBJECT_SENSITIVEDATAORIGIN
)

_AES_128_CFB = SymmetricDefinition(
    algorithm=TPM2_ALG_AES,
    key_bits=128,
    mode=TPM2_ALG_CFB,
)


class AlgorithmChoice(enum.Enum):
    RSA_2048 = "rsa2048"
    ECC_P256 = "ecc256"


PRIMARY_TEMPLATES: dict[AlgorithmChoice, PublicKeyMaterial] = {
    AlgorithmChoice.RSA_2048: PublicKeyMaterial(
        type=TPM2_ALG_RSA,
        name_alg=TPM2_ALG_SHA256,
        object_attributes=PRIMARY_OBJECT_ATTRIBUTES,
        auth_policy=b"",
        parameters=RsaParameters(
            symmetric=_AES_128_CFB,
            scheme=Scheme(TPM2_ALG_NULL),
            key_bits=2048,
            exponent=0,
        ),
        unique=b"",
    ),
    AlgorithmChoice.ECC_P256: PublicKeyMaterial(
        type=TPM2_ALG_ECC,
        name_alg=TPM2_ALG_SHA256,
        object_attributes=PRIMARY_OBJECT_ATTRIBUTES,
        auth_policy=b"",
        parameters=EccParameters(
            symmetric=_AES_128_CFB,
            scheme=Scheme(TPM2_ALG_NULL),
            curve_id=TPM2_ECC_NIST_P256,
            kdf=Scheme(TPM2_ALG_NULL),
        ),
        unique=EccPoint(),
    ),
}


def primary_template(choice: AlgorithmChoice) -> PublicKeyMaterial:
    return PRIMARY_TEMPLATES[choice]


class PrimaryKeyProvisioner:
    """
    Creates the ephemeral storage primary that parents a TSS2 key file.

    The primary lives until the transport session is flushed or closed;
    nothing here releases it.
    """

    def __init__(self, transport: DeviceTransport) -> None:
        self._transport = transport

    def select_algorithm(self) -> AlgorithmChoice:
        try:
            supported = self._transport.get_supported_algorithms()
        except Exception as exc:
            _logger.exception("Unable to fetch TPM supported algorithms.")
            raise ProvisionError(
                f"Unable to fetch TPM supported algorithms: {format_exception(exc)}",
                operation="get_supported_algorithms",
            ) from exc

        if TPM2_ALG_ECC in supported:
            choice = AlgorithmChoice.ECC_P256
        else:
            choice = AlgorithmChoice.RSA_2048
        _logger.debug("Selected primary algorithm=%s", choice.value)
        return choice

    def provision_primary(
        self,
        choice: AlgorithmChoice,
        hierarchy: int = TPM2_RH_OWNER,
    ) -> TransportHandle:
        """
        Create a primary under ``hierarchy``.

        Keys naming the endorsement, platform or null hierarchy as parent get
        their primary there, not under the owner hierarchy.
        """
        try:
            handle = self._transport.create_primary(
                hierarchy,
                primary_template(choice),
                SensitiveCreate(),
                b"",
                (),
            )
        except Exception as exc:
            _logger.exception(
                "Unable to create primary algorithm=%s hierarchy=%#x",
                choice.value,
                hierarchy,
            )
            raise ProvisionError(
                f"Unable to create {choice.value} primary under hierarchy "
                f"{hierarchy:#x}: {format_exception(exc)}",
                operation="create_primary",
            ) from exc
        _logger.info(
            "Created ephemeral primary algorithm=%s hierarchy=%#x",
            choice.value,
            hierarchy,
        )
        return handle

    def provision(self, hierarchy: int = TPM2_RH_OWNER) -> TransportHandle:
        return self.provision_primary(self.select_algorithm(), hierarchy)
