"""TPM 2.0 constants used by the codecs, the provisioner and the resolver."""

from __future__ import annotations

# TPM2_ALG_ID
TPM2_ALG_ERROR = 0x0000
TPM2_ALG_RSA = 0x0001
TPM2_ALG_SHA1 = 0x0004
TPM2_ALG_HMAC = 0x0005
TPM2_ALG_AES = 0x0006
TPM2_ALG_MGF1 = 0x0007
TPM2_ALG_KEYEDHASH = 0x0008
TPM2_ALG_XOR = 0x000A
TPM2_ALG_SHA256 = 0x000B
TPM2_ALG_SHA384 = 0x000C
TPM2_ALG_SHA512 = 0x000D
TPM2_ALG_NULL = 0x0010
TPM2_ALG_SM3_256 = 0x0012
TPM2_ALG_SM4 = 0x0013
TPM2_ALG_RSASSA = 0x0014
TPM2_ALG_RSAES = 0x0015
TPM2_ALG_RSAPSS = 0x0016
TPM2_ALG_OAEP = 0x0017
TPM2_ALG_ECDSA = 0x0018
TPM2_ALG_ECDH = 0x0019
TPM2_ALG_ECDAA = 0x001A
TPM2_ALG_SM2 = 0x001B
TPM2_ALG_ECSCHNORR = 0x001C
TPM2_ALG_ECMQV = 0x001D
TPM2_ALG_KDF1_SP800_56A = 0x0020
TPM2_ALG_KDF2 = 0x0021
TPM2_ALG_KDF1_SP800_108 = 0x0022
TPM2_ALG_ECC = 0x0023
TPM2_ALG_SYMCIPHER = 0x0025
TPM2_ALG_CAMELLIA = 0x0026
TPM2_ALG_CTR = 0x0040
TPM2_ALG_OFB = 0x0041
TPM2_ALG_CBC = 0x0042
TPM2_ALG_CFB = 0x0043
TPM2_ALG_ECB = 0x0044

# TPM2_ECC_CURVE
TPM2_ECC_NIST_P192 = 0x0001
TPM2_ECC_NIST_P224 = 0x0002
TPM2_ECC_NIST_P256 = 0x0003
TPM2_ECC_NIST_P384 = 0x0004
TPM2_ECC_NIST_P521 = 0x0005

# TPMA_OBJECT
TPMA_OBJECT_FIXEDTPM = 0x00000002
TPMA_OBJECT_STCLEAR = 0x00000004
TPMA_OBJECT_FIXEDPARENT = 0x00000010
TPMA_OBJECT_SENSITIVEDATAORIGIN = 0x00000020
TPMA_OBJECT_USERWITHAUTH = 0x00000040
TPMA_OBJECT_ADMINWITHPOLICY = 0x00000080
TPMA_OBJECT_NODA = 0x00000400
TPMA_OBJECT_ENCRYPTEDDUPLICATION = 0x00000800
TPMA_OBJECT_RESTRICTED = 0x00010000
TPMA_OBJECT_DECRYPT = 0x00020000
TPMA_OBJECT_SIGN_ENCRYPT = 0x00040000

# Handle types live in the most significant octet.
TPM2_HR_SHIFT = 24
TPM2_HR_RANGE_MASK = 0xFF000000
TPM2_HT_PCR = 0x00
TPM2_HT_NV_INDEX = 0x01
TPM2_HT_PERMANENT = 0x40
TPM2_HT_TRANSIENT = 0x80
TPM2_HT_PERSISTENT = 0x81

TPM2_RH_OWNER = 0x40000001
TPM2_RH_NULL = 0x40000007
TPM2_RH_LOCKOUT = 0x4000000A
TPM2_RH_ENDORSEMENT = 0x4000000B
TPM2_RH_PLATFORM = 0x4000000C

TPM2_TRANSIENT_FIRST = 0x80000000
TPM2_PERSISTENT_FIRST = 0x81000000
TPM2_PERSISTENT_LAST = 0x81FFFFFF
TPM2_NV_INDEX_FIRST = 0x01000000
TPM2_NV_INDEX_LAST = 0x01FFFFFF
TPM2_MAX_PCRS = 32

UINT32_MAX = 0xFFFFFFFF

# Buffer limits of the reference TSS (tss2_tpm2_types.h).
TPM2_SHA512_DIGEST_SIZE = 64
TPM2_MAX_RSA_KEY_BYTES = 512
TPM2_MAX_ECC_KEY_BYTES = 128
TPM2_MAX_PRIVATE_BUFFER = 1550

# Hierarchies a TSS2 key file may name as its parent.
LOADABLE_KEY_HIERARCHIES: frozenset[int] = frozenset(
    {TPM2_RH_OWNER, TPM2_RH_NULL, TPM2_RH_ENDORSEMENT, TPM2_RH_PLATFORM}
)


def handle_type(handle: int) -> int:
    return (handle & TPM2_HR_RANGE_MASK) >> TPM2_HR_SHIFT


def is_persistent_handle(handle: int) -> bool:
    return TPM2_PERSISTENT_FIRST <= handle <= TPM2_PERSISTENT_LAST
