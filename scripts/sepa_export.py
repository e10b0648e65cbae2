#!/usr/bin/env python3
"""
Render a SEPA XML file from a JSON batch description.

Usage:
    python3 scripts/sepa_export.py --input batch.json [--output out.xml]
    python3 scripts/sepa_export.py --input payouts.json --credit-transfer

Direct debit input (pain.008):
    {
      "creditor": {"name": ..., "iban": ..., "bic": ..., "creditor_id": ...},
      "collection_date": "2025-03-01",
      "sequence_type": "RCUR",
      "debtors": [
        {"debtor_id": ..., "name": ..., "iban": ..., "bic": ...,
         "mandate_id": ..., "mandate_date": "2024-01-15",
         "amount": "850.00", "remittance_info": "Miete 03/2025"}
      ]
    }

Credit transfer input (pain.001):
    {
      "account": {"name": ..., "iban": ..., "bic": ...},
      "execution_date": "2025-03-01",
      "transfers": [
        {"recipient_name": ..., "iban": ..., "bic": null,
         "amount": "120.00", "reference": "Guthaben BK 2024",
         "end_to_end_id": "BKA-2024-T1"}
      ]
    }

Exit status 1 with one line per problem when validation fails.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import Any

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from billing_config import get_active_config
from billing_engines.sepa import SepaAccount, SepaCreditor, SepaDebtor, SepaTransfer
from billing_kernel.domain.money import to_decimal
from billing_kernel.exceptions import SepaError, SepaValidationError
from billing_kernel.logging_config import configure_logging
from billing_services.sepa_export import SepaExport, SepaExportService


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render a SEPA pain.008 or pain.001 file from JSON.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--input", required=True, type=Path, help="JSON batch description.")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Target XML file (default: stdout).",
    )
    parser.add_argument(
        "--credit-transfer",
        action="store_true",
        help="Render a pain.001 credit transfer instead of a direct debit.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Engine settings YAML (default: BILLING_CONFIG_PATH or packaged defaults).",
    )
    parser.add_argument("--message-id", default=None, help="Override the generated MsgId.")
    return parser.parse_args(argv)


def build_export(
    payload: dict[str, Any],
    service: SepaExportService,
    *,
    credit_transfer: bool = False,
    message_id: str | None = None,
) -> SepaExport:
    if credit_transfer:
        account = SepaAccount(**payload["account"])
        transfers = [
            SepaTransfer(
                recipient_name=t["recipient_name"],
                iban=t["iban"],
                bic=t.get("bic"),
                amount=to_decimal(t["amount"]),
                reference=t.get("reference", ""),
                end_to_end_id=t["end_to_end_id"],
            )
            for t in payload.get("transfers", [])
        ]
        return service.export_credit_transfers(
            account,
            transfers,
            _parse_date(payload.get("execution_date")),
            message_id=message_id,
        )

    creditor = SepaCreditor(**payload["creditor"])
    debtors = [
        SepaDebtor(
            debtor_id=d["debtor_id"],
            name=d["name"],
            iban=d["iban"],
            bic=d.get("bic", ""),
            mandate_id=d["mandate_id"],
            mandate_date=_parse_date(d.get("mandate_date")),
            amount=to_decimal(d["amount"]),
            remittance_info=d.get("remittance_info", ""),
            end_to_end_id=d.get("end_to_end_id"),
        )
        for d in payload.get("debtors", [])
    ]
    return service.export_direct_debits(
        creditor,
        debtors,
        _parse_date(payload.get("collection_date")),
        sequence_type=payload.get("sequence_type"),
        message_id=message_id,
    )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(stream=sys.stderr)

    payload = json.loads(args.input.read_text(encoding="utf-8"))
    service = SepaExportService(settings=get_active_config(args.config))

    try:
        export = build_export(
            payload,
            service,
            credit_transfer=args.credit_transfer,
            message_id=args.message_id,
        )
    except SepaValidationError as exc:
        for error in exc.errors:
            print(f"ERROR: {error}", file=sys.stderr)
        return 1
    except SepaError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if args.output is None:
        sys.stdout.write(export.xml)
    else:
        args.output.write_text(export.xml, encoding="utf-8")
        print(
            f"Wrote {args.output} ({export.number_of_transactions} transactions, "
            f"CtrlSum {export.control_sum})",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
