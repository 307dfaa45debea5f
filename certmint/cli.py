# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""CertMint CLI.

Commands:
    certmint serve                          Run the HTTP service
    certmint init-db                        Create tables and seed bootstrap admins
    certmint fingerprint FILE...            Print the evidence fingerprint of documents
    certmint recover PAYLOAD SIGNATURE      Recover the signer of a certification
"""

import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional

import typer

import certmint

# Exit codes
EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILURE = 1
EXIT_PARSE_ERROR = 2
EXIT_IO_ERROR = 3

app = typer.Typer(
    name="certmint",
    help="CertMint production certification service tools.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"certmint version {certmint.__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """CertMint production certification service tools.

    Output is JSON for easy piping between commands.
    """


def output_json(data: Any) -> None:
    typer.echo(json.dumps(data, default=str))


def output_error(code: str, message: str, exit_code: int = EXIT_VALIDATION_FAILURE) -> None:
    """Output an error and exit."""
    typer.echo(json.dumps({"error": True, "code": code, "message": message}))
    raise typer.Exit(exit_code)


def read_input(source: str) -> str:
    """Read input from stdin ('-'), a file path, or a literal value."""
    try:
        if source == "-":
            return sys.stdin.read()
        path = Path(source)
        if path.exists() and path.is_file():
            return path.read_text(encoding="utf-8")
        return source
    except OSError as e:
        typer.echo(f"Error reading input: {e}", err=True)
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command("serve")
def serve_cmd() -> None:
    """Run the CertMint HTTP service with uvicorn."""
    from certmint.main import main as run_server

    run_server()


@app.command("init-db")
def init_db_cmd() -> None:
    """Create database tables and seed configured bootstrap admins."""
    import certmint.config as _config
    from certmint.db.session import get_db_session, init_database
    from certmint.directory import seed_bootstrap_admins

    init_database()
    created = 0
    if _config.BOOTSTRAP_ADMINS:
        with get_db_session() as db:
            created = seed_bootstrap_admins(db, _config.BOOTSTRAP_ADMINS)
    output_json({"database": _config.DATABASE_URL.split("://", 1)[0], "bootstrap_admins": created})


@app.command("fingerprint")
def fingerprint_cmd(
    files: List[Path] = typer.Argument(..., help="Evidence documents to hash"),
    metadata: Optional[str] = typer.Option(
        None,
        "--metadata",
        "-m",
        help="Declared production metadata: JSON string, file path, or '-'",
    ),
) -> None:
    """Hash evidence documents and print the bundle fingerprint."""
    from certmint.evidence import fingerprint_evidence, hash_file
    from certmint.exceptions import InvalidEvidenceError

    try:
        hashes = [hash_file(path) for path in files]
    except OSError as e:
        output_error("IO_ERROR", str(e), EXIT_IO_ERROR)
        return

    declared = {}
    if metadata is not None:
        try:
            declared = json.loads(read_input(metadata))
        except json.JSONDecodeError as e:
            output_error("PARSE_ERROR", f"Invalid metadata JSON: {e}", EXIT_PARSE_ERROR)
            return

    try:
        fingerprint = fingerprint_evidence(hashes, declared)
    except InvalidEvidenceError as e:
        output_error(e.code, e.message)
        return

    output_json({
        "documents": {str(path): digest for path, digest in zip(files, hashes)},
        "fingerprint": fingerprint,
    })


@app.command("recover")
def recover_cmd(
    payload: str = typer.Argument(
        ..., help="Certification payload JSON, file path, or '-' for stdin"
    ),
    signature: str = typer.Argument(..., help="0x-hex signature"),
    chain_id: Optional[int] = typer.Option(
        None, "--chain-id", help="Override the configured chain id"
    ),
    verify: bool = typer.Option(
        False, "--verify", help="Fail unless the signer is the payload's certifier"
    ),
) -> None:
    """Recover the signer of a certification under the configured domain."""
    from certmint.codec import CertificationPayload, TypedDataCodec, default_domain
    from certmint.exceptions import SignatureInvalidError

    try:
        message = json.loads(read_input(payload))
    except json.JSONDecodeError as e:
        output_error("PARSE_ERROR", f"Invalid payload JSON: {e}", EXIT_PARSE_ERROR)
        return

    domain = default_domain()
    if chain_id is not None:
        domain = replace(domain, chain_id=chain_id)

    codec = TypedDataCodec()
    try:
        certification = CertificationPayload.from_message(message)
        signer = codec.recover(domain, certification, signature)
        if verify:
            codec.verify(domain, certification, signature)
    except SignatureInvalidError as e:
        output_error(e.code, e.message)
        return

    output_json({
        "signer": signer,
        "certifier": certification.certifier,
        "matches_certifier": signer.lower() == certification.certifier.lower(),
        "domain": domain.to_dict(),
    })


if __name__ == "__main__":
    app()
