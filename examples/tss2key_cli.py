from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

if __package__ in (None, ""):
    repo_src = Path(__file__).resolve().parents[1] / "src"
    if str(repo_src) not in sys.path:
        sys.path.insert(0, str(repo_src))

from tpm2_object_loader import (  # noqa: E402
    LoadableKey,
    Tpm2ObjectError,
    TpmConfig,
    configure_logging,
    load_file,
    parse_handle,
    serialize,
    serialize_pem,
    unmarshal_private,
    unmarshal_public,
)
from tpm2_object_loader.handles import HandleFlags  # noqa: E402


class _HelpFormatter(
    argparse.RawTextHelpFormatter,
    argparse.ArgumentDefaultsHelpFormatter,
):
    """Keep multiline examples readable and include defaults."""


CLI_HELP_EPILOG = """Environment:
  Optional:
    TPM2TOOLS_TCTI            # e.g. swtpm:port=2321, device:/dev/tpmrm0
    TPM_OBJECT_HANDLE_FLAGS   # e.g. o,p,e,n,persistent

Examples:
  # Bundle tpm2_create output into a portable key file
  python3 examples/tss2key_cli.py encode --public key.pub --private key.priv --parent o --out key.tss

  # Show what a TSS2 key file contains
  python3 examples/tss2key_cli.py inspect key.tss

  # Resolve an object string against a TPM (needs tpm2-pytss)
  python3 examples/tss2key_cli.py resolve key.tss
  python3 examples/tss2key_cli.py resolve 0x81000001 --auth str:secret
"""


def _read_binary_file(path: str) -> bytes:
    source = Path(path)
    if not source.exists():
        raise ValueError(f"File does not exist: {source}")
    if not source.is_file():
        raise ValueError(f"Path is not a file: {source}")
    return source.read_bytes()


def _write_output(payload: bytes, out_path: str | None, label: str) -> None:
    if out_path is None:
        sys.stdout.buffer.write(payload)
        return
    target = Path(out_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload)
    print(f"Wrote {label} to: {target}")


def _parse_parent(value: str) -> int:
    if value == "0":
        return 0
    parent = parse_handle(value, HandleFlags.ALL_HIERARCHIES | HandleFlags.PERSISTENT)
    if parent is None:
        raise ValueError(f"Invalid parent '{value}'. Use a hierarchy name or a persistent handle.")
    return parent


def _run_encode(args: argparse.Namespace) -> None:
    public = unmarshal_public(_read_binary_file(args.public))
    private = unmarshal_private(_read_binary_file(args.private))
    key = LoadableKey.from_materials(
        public,
        private,
        parent=_parse_parent(args.parent),
        empty_auth=args.empty_auth,
    )
    payload = serialize(key) if args.der else serialize_pem(key)
    _write_output(payload, args.out, "TSS2 private key")


def _run_inspect(args: argparse.Namespace) -> None:
    key = load_file(args.key_file)
    print(json.dumps(key.to_dict(), indent=2, sort_keys=True))


def _run_resolve(args: argparse.Namespace) -> None:
    from tpm2_object_loader.esys_transport import EsysTransport
    from tpm2_object_loader.resolver import ObjectResolver

    config = TpmConfig.from_env()
    with EsysTransport(config) as transport:
        resolver = ObjectResolver(transport, config=config)
        loaded = resolver.resolve(
            args.identifier,
            want_auth=args.auth is not None,
            auth_spec=args.auth,
            restricted_session=args.restricted,
        )
        print(
            json.dumps(
                {
                    "strategy": loaded.strategy,
                    "handle": f"{loaded.handle:#010x}",
                    "source_path": loaded.source_path,
                    "ephemeral_parent": loaded.ephemeral_parent,
                    "empty_auth": loaded.empty_auth,
                },
                indent=2,
                sort_keys=True,
            )
        )
        if loaded.ephemeral_parent:
            transport.flush(loaded.transport_handle)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Encode, inspect and resolve TPM 2.0 object references.",
        formatter_class=_HelpFormatter,
        epilog=CLI_HELP_EPILOG,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    encode = subparsers.add_parser(
        "encode",
        help="Build a TSS2 PRIVATE KEY from TPM2B_PUBLIC/TPM2B_PRIVATE files.",
        formatter_class=_HelpFormatter,
    )
    encode.add_argument("--public", required=True, help="TPM2B_PUBLIC blob file.")
    encode.add_argument("--private", required=True, help="TPM2B_PRIVATE blob file.")
    encode.add_argument(
        "--parent",
        default="o",
        help="Parent hierarchy (o, e, p, n), 0, or a persistent handle.",
    )
    encode.add_argument(
        "--empty-auth",
        action="store_true",
        help="Mark the key as having an empty authorization value.",
    )
    encode.add_argument("--der", action="store_true", help="Write DER instead of PEM.")
    encode.add_argument("--out", help="Output path. Defaults to stdout.")

    inspect = subparsers.add_parser(
        "inspect",
        help="Print the contents of a TSS2 key file as JSON.",
        formatter_class=_HelpFormatter,
    )
    inspect.add_argument("key_file", help="PEM or DER TSS2 key file.")

    resolve = subparsers.add_parser(
        "resolve",
        help="Resolve a context file, TSS2 key file or handle against the TPM.",
        formatter_class=_HelpFormatter,
    )
    resolve.add_argument("identifier", help="File path, hierarchy name or handle.")
    resolve.add_argument("--auth", help="Authorization: str:, hex:, file: or plain text.")
    resolve.add_argument(
        "--restricted",
        action="store_true",
        help="Only allow password authorization.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        configure_logging()

        if args.command == "encode":
            _run_encode(args)
            return 0

        if args.command == "inspect":
            _run_inspect(args)
            return 0

        if args.command == "resolve":
            _run_resolve(args)
            return 0

        raise ValueError("Unsupported command.")
    except (Tpm2ObjectError, ValueError, OSError) as exc:
        print(f"TSS2 key CLI error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
