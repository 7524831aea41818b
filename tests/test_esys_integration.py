from __future__ import annotations

import shutil
import socket
import subprocess
import time
from pathlib import Path
from typing import Callable, Iterator

import pytest

pytest.importorskip("tpm2_pytss")

from tpm2_pytss import ESYS_TR  # noqa: E402

from tpm2_object_loader import DeviceError, ObjectResolver, TpmConfig  # noqa: E402
from tpm2_object_loader.constants import (  # noqa: E402
    TPM2_ALG_RSA,
    TPM2_HT_TRANSIENT,
    TPM2_RH_OWNER,
    handle_type,
)
from tpm2_object_loader.esys_transport import EsysTransport  # noqa: E402

pytestmark = pytest.mark.integration


def _free_port_pair() -> int:
    for _attempt in range(20):
        with socket.socket() as probe:
            probe.bind(("127.0.0.1", 0))
            port = probe.getsockname()[1]
        if port >= 65535:
            continue
        with socket.socket() as ctrl_probe:
            try:
                ctrl_probe.bind(("127.0.0.1", port + 1))
            except OSError:
                continue
        return port
    pytest.skip("Could not find two consecutive free TCP ports for swtpm.")


def _wait_for_port(port: int, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False


@pytest.fixture(scope="module")
def swtpm_tcti(tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    swtpm = shutil.which("swtpm")
    if swtpm is None:
        pytest.skip("swtpm was not found. Install swtpm for ESAPI integration tests.")

    state_dir = tmp_path_factory.mktemp("swtpm-state")
    port = _free_port_pair()
    proc = subprocess.Popen(
        [
            swtpm,
            "socket",
            "--tpm2",
            "--server",
            f"type=tcp,port={port}",
            "--ctrl",
            f"type=tcp,port={port + 1}",
            "--tpmstate",
            f"dir={state_dir}",
            "--flags",
            "not-need-init,startup-clear",
        ],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )
    try:
        if not _wait_for_port(port):
            proc.kill()
            _stdout, stderr = proc.communicate()
            pytest.fail(f"swtpm did not start.\nstderr:\n{stderr}")
        yield f"swtpm:host=127.0.0.1,port={port}"
    finally:
        proc.terminate()
        proc.wait(timeout=10)


@pytest.fixture
def esys(swtpm_tcti: str) -> Iterator[EsysTransport]:
    with EsysTransport(TpmConfig(tcti=swtpm_tcti)) as transport:
        yield transport


def test_supported_algorithms_include_rsa(esys: EsysTransport) -> None:
    assert TPM2_ALG_RSA in esys.get_supported_algorithms()


def test_owner_token_maps_to_owner_tr(esys: EsysTransport) -> None:
    loaded = ObjectResolver(esys).resolve("owner")
    assert loaded.handle == TPM2_RH_OWNER
    assert loaded.transport_handle == ESYS_TR.OWNER


def test_tss2_key_with_owner_parent_creates_transient_primary(
    esys: EsysTransport, write_key_file: Callable[..., Path]
) -> None:
    loaded = ObjectResolver(esys).resolve(str(write_key_file(parent=0)))
    try:
        assert loaded.ephemeral_parent is True
        assert handle_type(loaded.handle) == TPM2_HT_TRANSIENT
        assert loaded.public is not None
    finally:
        esys.flush(loaded.transport_handle)


def test_missing_persistent_parent_is_a_device_error(
    esys: EsysTransport, write_key_file: Callable[..., Path]
) -> None:
    with pytest.raises(DeviceError) as excinfo:
        ObjectResolver(esys).resolve(str(write_key_file(parent=0x81FFFFF0)))
    assert excinfo.value.operation == "translate_handle"
