"""Prompt construction for SMS classification.

This module builds:
- The system instructions for the extraction task.
- The user content: the user's ledger categories and payees, the sender, a
  fallback time of day, and the SMS body between fixed delimiters.
- The strict ``response_format`` (JSON Schema) object for the OpenAI
  Responses API.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .fees import TransferType

MAX_CATEGORY_NAMES = 100
MAX_PAYEE_NAMES = 200

BEGIN = "BEGIN_SMS\n"
END = "\nEND_SMS"


@dataclass(frozen=True, slots=True)
class ClassificationContext:
    """Ledger vocabulary and message metadata sent alongside the SMS body."""

    categories: Sequence[str] = field(default_factory=tuple)
    payees: Sequence[str] = field(default_factory=tuple)
    sender: str | None = None
    fallback_time: str | None = None


def local_time_of_day(ts: datetime, tz: tzinfo) -> str:
    """``HH:MM`` of ``ts`` in ``tz``; used when the SMS itself carries no time."""

    return ts.astimezone(tz).strftime("%H:%M")


def build_system_instructions() -> str:
    """Return the fixed system instructions for the extraction task."""

    return (
        "You read SMS notifications from Zambian banks and mobile-money operators and "
        "decide whether each one records a real movement of money. When it does, extract "
        "the transaction details the user needs for their budget. Never invent payees or "
        "categories, never guess an amount, and answer with JSON that matches the schema."
    )


def build_prompt(text: str, context: ClassificationContext) -> str:
    """Build the user content for one SMS.

    Category and payee lists are truncated to ``MAX_CATEGORY_NAMES`` and
    ``MAX_PAYEE_NAMES`` entries to keep the prompt small.
    """

    categories = ", ".join(list(context.categories)[:MAX_CATEGORY_NAMES]) or "(none)"
    payees = ", ".join(list(context.payees)[:MAX_PAYEE_NAMES]) or "(none)"
    fallback_time = context.fallback_time or "unknown"
    sender_line = (
        f"SMS sender: {context.sender} (compare its network with the recipient's)\n"
        if context.sender
        else ""
    )

    lines = [
        sender_line + "Ledger categories:",
        categories,
        "",
        "Existing payees:",
        payees,
        "",
        "Rules:",
        "1. is_transaction is true only when money actually moved (sent, received, paid, "
        "withdrawn, deposited, credited, debited, purchased, topped up). Balance notices, "
        "promotions, betting adverts, OTPs, loan offers and chat are not transactions; say "
        "why in reason.",
        "2. amount is the amount moved, never the remaining balance. Use null when the "
        "message does not state one.",
        "3. direction is inflow for money received, deposited, credited or refunded and "
        "outflow for money sent, paid, withdrawn, purchased or debited.",
        "4. payee is the full person or business name only when the SMS names one. If it "
        "matches an existing payee (loosely), return that exact existing name with "
        "is_new_payee=false; otherwise return the full extracted name with "
        "is_new_payee=true. With no payee named, use null and is_new_payee=false.",
        "5. category must be one of the ledger categories above or null. Leave generic "
        "debits, credits and transfers between own accounts uncategorised.",
        "6. memo reads \"[Action] [Payee] | [HH:MM] | Ref: [ID] | Bal: [Balance]\" with the "
        f"full payee name and the time only (no date). Use {fallback_time} when the SMS "
        "has no time.",
        "7. transaction_ref is the bare reference or transaction id (after labels such as "
        "TID:, Ref:, Txn ID:) or null.",
        "8. transfer_type selects the fee schedule: same_network, cross_network, to_bank, "
        "to_mobile, withdrawal, airtime, bill_payment, pos or unknown. Mobile numbers may "
        "start with 0 or 260: 97/77 are Airtel, 96/76 MTN, 95/75 Zamtel. A bank sending to "
        "one of those numbers is to_mobile; a wallet sending to its own network is "
        "same_network, to another network cross_network. POS means pos; ATM, agent or "
        "withdraw means withdrawal; airtime, data or top-up means airtime; till or "
        "merchant means bill_payment; a bank account number means to_bank. Use unknown "
        "only when nothing fits.",
        "9. is_follow_up is true when the SMS only adds detail (for example the "
        "recipient's phone number) to a transaction announced by an earlier message from "
        "the same sender and states no new movement of money of its own.",
        "",
        f"Fallback time (when the SMS has none): {fallback_time}",
        "",
    ]
    return "\n".join(lines) + BEGIN + text + END


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema ``response_format`` for one extraction."""

    transfer_types: list[str | None] = [t.value for t in TransferType]
    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "sms_extraction",
        "schema": {
            "type": "object",
            "properties": {
                "is_transaction": {"type": "boolean"},
                "reason": {"type": "string"},
                "amount": {"type": ["number", "null"]},
                "direction": {"type": ["string", "null"], "enum": ["inflow", "outflow", None]},
                "payee": {"type": ["string", "null"]},
                "is_new_payee": {"type": "boolean"},
                "category": {"type": ["string", "null"]},
                "memo": {"type": ["string", "null"]},
                "transaction_ref": {"type": ["string", "null"]},
                "transfer_type": {"type": ["string", "null"], "enum": transfer_types + [None]},
                "is_follow_up": {"type": "boolean"},
            },
            "required": [
                "is_transaction",
                "reason",
                "amount",
                "direction",
                "payee",
                "is_new_payee",
                "category",
                "memo",
                "transaction_ref",
                "transfer_type",
                "is_follow_up",
            ],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "BEGIN",
    "ClassificationContext",
    "END",
    "MAX_CATEGORY_NAMES",
    "MAX_PAYEE_NAMES",
    "build_prompt",
    "build_response_format",
    "build_system_instructions",
    "local_time_of_day",
]
