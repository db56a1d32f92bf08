# ruff: noqa: I001
"""CLI for the ``sms_ledger`` package.

This module exposes callable command handlers (``cmd_ingest``, ``cmd_sweep``,
``cmd_fee``) and a Typer-based console interface. Environment variables
(``YNAB_TOKEN``, ``OPENAI_API_KEY``, ``DATABASE_URL`` and friends) are loaded
from a local ``.env`` using ``python-dotenv`` before delegating to command
logic. Business logic lives in ``sms_ledger.api`` and related modules.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv

from .logging_setup import configure_logging


def _read_payload(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        decoded = json.load(f)
    if not isinstance(decoded, dict):
        raise ValueError("payload must be a JSON object")
    return decoded


def cmd_ingest(
    *,
    sender: str | None = None,
    text: str | None = None,
    received_at: str | None = None,
    source: str | None = None,
    payload_path: Path | None = None,
) -> int:
    """Run one message through the pipeline and print the result as JSON.

    Returns ``1`` when the message could not be processed (``failed``) or the
    inputs/settings are unusable, ``0`` otherwise.
    """

    from .api import build_pipeline, ingest_message
    from .config import Settings
    from .errors import SmsLedgerError

    if payload_path is not None:
        try:
            payload = _read_payload(payload_path)
        except FileNotFoundError:
            print(f"Error: File not found: {payload_path}", file=sys.stderr)
            return 1
        except (OSError, ValueError) as e:
            print(f"Error: Failed to read payload: {e}", file=sys.stderr)
            return 1
    else:
        if not sender or text is None:
            print("Error: provide --sender and --text, or --payload.", file=sys.stderr)
            return 1
        payload = {"sender": sender, "text": text, "source": source or "cli"}
        if received_at:
            payload["received_at"] = received_at

    try:
        pipeline = build_pipeline(Settings.from_env())
    except SmsLedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    result = ingest_message(payload, pipeline=pipeline)
    print(json.dumps(result.to_json_dict(), indent=2))
    return 1 if result.status == "failed" else 0


def cmd_sweep(*, older_than_minutes: float | None = None) -> int:
    """Delete stale correlation records and print how many went."""

    from .api import sweep_correlations
    from .config import Settings
    from .errors import SmsLedgerError

    try:
        deleted = sweep_correlations(Settings.from_env(), older_than_minutes=older_than_minutes)
    except SmsLedgerError as e:
        print(f"Error: sweep failed: {e}", file=sys.stderr)
        return 1
    print(f"deleted {deleted}")
    return 0


def cmd_fee(provider: str, transfer_type: str, amount: str) -> int:
    """Print the fee quote for one ``(provider, transfer type, amount)``."""

    from decimal import Decimal, InvalidOperation

    from .config import Settings, load_config
    from .errors import SmsLedgerError
    from .fees import Provider, TransferType

    try:
        prov = Provider(provider.strip().lower())
        ttype = TransferType(transfer_type.strip().lower())
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    try:
        value = Decimal(amount)
    except InvalidOperation:
        print(f"Error: not an amount: {amount!r}", file=sys.stderr)
        return 1

    settings = Settings.from_env()
    try:
        fees = load_config(settings.config_path, fee_category=settings.fee_category).fees
    except SmsLedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    quote = fees.calculate_fee(prov, ttype, value)
    print(
        json.dumps(
            {
                "provider": str(prov),
                "transfer_type": str(ttype),
                "amount": str(value),
                "status": str(quote.status),
                "fee": str(quote.fee) if quote.fee is not None else None,
                "payee": quote.payee,
                "category": quote.category,
            },
            indent=2,
        )
    )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Turn bank and mobile-money SMS notifications into YNAB transactions. "
        "Loads YNAB_TOKEN, OPENAI_API_KEY and DATABASE_URL from a local .env."
    ),
)


def _exit_with(code: int) -> None:
    if code:
        raise typer.Exit(code)


@app.command("ingest")
def ingest_cmd(
    *,
    sender: str | None = typer.Option(None, help="SMS sender id (e.g. AirtelMoney)."),
    text: str | None = typer.Option(None, help="SMS body."),
    received_at: str | None = typer.Option(
        None, help="Receipt time (ISO-8601 or epoch); defaults to now."
    ),
    source: str | None = typer.Option(None, help="Transport label recorded in the result."),
    payload: Path | None = typer.Option(
        None,
        help="JSON file with sender/text/received_at instead of the flags above.",
        dir_okay=False,
    ),
) -> None:
    """Ingest one SMS and print the outcome as JSON."""

    load_dotenv()
    _exit_with(
        cmd_ingest(
            sender=sender,
            text=text,
            received_at=received_at,
            source=source,
            payload_path=payload,
        )
    )


@app.command("sweep")
def sweep_cmd(
    *,
    older_than_minutes: float | None = typer.Option(
        None, help="Retention window; defaults to SMS_LEDGER_RETENTION_MINUTES."
    ),
) -> None:
    """Delete correlation records older than the retention window."""

    load_dotenv()
    _exit_with(cmd_sweep(older_than_minutes=older_than_minutes))


@app.command("fee")
def fee_cmd(
    provider: str = typer.Argument(..., help="airtel, mtn, zamtel, absa, stanchart"),
    transfer_type: str = typer.Argument(..., help="e.g. same_network, to_mobile"),
    amount: str = typer.Argument(..., help="Transfer amount in currency units."),
) -> None:
    """Show the fee a provider charges for one transfer."""

    load_dotenv()
    _exit_with(cmd_fee(provider, transfer_type, amount))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
