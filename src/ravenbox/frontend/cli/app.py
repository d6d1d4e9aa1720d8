"""
RavenBox command line.

Usage:
    ravenbox upload <path> [-u PREFIX] [-n NAME] [-p PASSWORD | -P] [-t SECONDS]
    ravenbox download <key> [-o OUTPUT] [-p PASSWORD | -P]
    ravenbox list [-u PREFIX] [-m MAX_KEYS]
    ravenbox encrypt <input> [output] [-p PASSWORD]
    ravenbox decrypt <input> [output] [-p PASSWORD]

Storage credentials come from ~/.config/ravenbox/ravenbox.json (see
ravenbox.core.config). A password may also be given through RAVENBOX_PASSWORD.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from ravenbox.core.config import PASSWORD_ENV, load_config
from ravenbox.core.exceptions import RavenBoxError
from ravenbox.core.paths import crypt_output_name
from ravenbox.core.transfer import TransferOrchestrator, decrypt_file, encrypt_file
from ravenbox.security.container import DEFAULT_CHUNK_SIZE

from .logging_config import configure_logging

logger = logging.getLogger("ravenbox.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def _resolve_password(args: argparse.Namespace, required: bool = False) -> Optional[str]:
    # flag > environment > prompt
    if args.password is not None:
        return args.password
    env_password = os.getenv(PASSWORD_ENV)
    if env_password:
        return env_password
    if getattr(args, "prompt_password", False) or required:
        return getpass.getpass("Password: ")
    return None


def _orchestrator(args: argparse.Namespace) -> TransferOrchestrator:
    backend = load_config(args.config).build_backend()
    return TransferOrchestrator(backend, chunk_size=getattr(args, "chunk_size", DEFAULT_CHUNK_SIZE))


def cmd_upload(args: argparse.Namespace) -> int:
    password = _resolve_password(args)
    key = _orchestrator(args).encrypt_and_upload(
        args.path,
        password=password,
        remote_key=args.name,
        prefix=args.prefix,
        expires_in=args.expires,
    )
    print(f"Uploaded {args.path} to {key}" + (" (encrypted)" if password is not None else ""))
    return EXIT_OK


def cmd_download(args: argparse.Namespace) -> int:
    password = _resolve_password(args)
    path = _orchestrator(args).download_and_decrypt(args.key, args.output, password=password)
    print(f"Downloaded {args.key} to {path}")
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    objects = _orchestrator(args).list_objects(args.prefix, args.max_keys)
    if not objects:
        print("No objects found.")
        return EXIT_OK
    for index, obj in enumerate(objects, start=1):
        modified = obj.modified.strftime("%Y-%m-%d %H:%M:%S") if obj.modified else "-"
        print(f"{index}: {obj.key}  {obj.size}  {modified}")
    return EXIT_OK


def cmd_encrypt(args: argparse.Namespace) -> int:
    password = _resolve_password(args, required=True)
    output = args.output or Path.cwd() / crypt_output_name(args.input, encrypt=True)
    path = encrypt_file(args.input, output, password, chunk_size=args.chunk_size)
    print(f"Encrypted {args.input} to {path}")
    return EXIT_OK


def cmd_decrypt(args: argparse.Namespace) -> int:
    password = _resolve_password(args, required=True)
    output = args.output or Path.cwd() / crypt_output_name(args.input, encrypt=False)
    path = decrypt_file(args.input, output, password)
    print(f"Decrypted {args.input} to {path}")
    return EXIT_OK


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a valid integer") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"'{value}' must be greater than zero")
    return number


def _add_password_options(parser: argparse.ArgumentParser, prompt: bool = True) -> None:
    parser.add_argument("-p", "--password", default=None, help="Password (or set RAVENBOX_PASSWORD)")
    if prompt:
        parser.add_argument(
            "-P",
            "--prompt-password",
            action="store_true",
            help="Ask for the password interactively",
        )


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ravenbox",
        description="Password-encrypted uploads and downloads for S3-compatible object storage.",
    )
    parser.add_argument("--config", default=None, help="Path to the JSON config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Upload a file, encrypting it when a password is given")
    upload.add_argument("path", help="Local file to upload")
    upload.add_argument("-u", "--prefix", default="", help="Remote directory prefix")
    upload.add_argument("-n", "--name", default=None, help="Remote object name (default: file name)")
    upload.add_argument("-t", "--expires", type=_positive_int, default=None, help="Expiry in seconds from now")
    upload.add_argument("--chunk-size", type=_positive_int, default=DEFAULT_CHUNK_SIZE, help="Plaintext bytes per chunk")
    _add_password_options(upload)
    upload.set_defaults(func=cmd_upload)

    download = subparsers.add_parser("download", help="Download an object, decrypting it if needed")
    download.add_argument("key", help="Remote object key")
    download.add_argument("-o", "--output", default=None, help="Output file or directory (default: cwd)")
    _add_password_options(download)
    download.set_defaults(func=cmd_download)

    listing = subparsers.add_parser("list", help="List remote objects")
    listing.add_argument("-u", "--prefix", default="", help="Only list keys under this prefix")
    listing.add_argument("-m", "--max-keys", type=_positive_int, default=None, help="Maximum number of keys")
    listing.set_defaults(func=cmd_list)

    encrypt = subparsers.add_parser("encrypt", help="Encrypt a local file")
    encrypt.add_argument("input")
    encrypt.add_argument("output", nargs="?", default=None)
    encrypt.add_argument("--chunk-size", type=_positive_int, default=DEFAULT_CHUNK_SIZE, help="Plaintext bytes per chunk")
    _add_password_options(encrypt, prompt=False)
    encrypt.set_defaults(func=cmd_encrypt)

    decrypt = subparsers.add_parser("decrypt", help="Decrypt a local container file")
    decrypt.add_argument("input")
    decrypt.add_argument("output", nargs="?", default=None)
    _add_password_options(decrypt, prompt=False)
    decrypt.set_defaults(func=cmd_decrypt)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (RavenBoxError, OSError) as e:
        logger.debug("command failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
