from __future__ import annotations

import pytest

from tpm2_object_loader import ConfigurationError, HandleFlags, TpmConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TPM2TOOLS_TCTI", "TCTI", "TPM_OBJECT_HANDLE_FLAGS"):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = TpmConfig.from_env()
    assert config.tcti is None
    assert config.handle_flags == HandleFlags.ALL_W_NV


def test_tcti_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TCTI", "device:/dev/tpm0")
    assert TpmConfig.from_env().tcti == "device:/dev/tpm0"
    monkeypatch.setenv("TPM2TOOLS_TCTI", "swtpm:port=2321")
    assert TpmConfig.from_env().tcti == "swtpm:port=2321"


def test_blank_tcti_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TPM2TOOLS_TCTI", "   ")
    with pytest.raises(ConfigurationError, match="must not be blank"):
        TpmConfig.from_env()


def test_handle_flags_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TPM_OBJECT_HANDLE_FLAGS", "o,persistent")
    assert TpmConfig.from_env().handle_flags == HandleFlags.OWNER | HandleFlags.PERSISTENT


@pytest.mark.parametrize("value", ["none", "", "o,unknown"])
def test_invalid_handle_flags(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("TPM_OBJECT_HANDLE_FLAGS", value)
    with pytest.raises(ConfigurationError):
        TpmConfig.from_env()
