"""
Utility: List a counterparty's open charges, grouped by container.

Run from repo root:
  COUNTERPARTY_ID=c1 python scripts/inspect_open_charges.py

Optional env vars:
  DIRECTION=payable          (default: receivable)
  INVOICING_LEDGER_BACKEND=http  to query the live ledger service
"""

import os
import sys


def _bootstrap_django() -> None:
    """Ensure `backend/` is importable and Django is configured."""
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
    backend_path = os.path.join(repo_root, "backend")
    if backend_path not in sys.path:
        sys.path.insert(0, backend_path)

    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "invoice_engine.settings")

    import django  # noqa: WPS433 (local import after path bootstrap)

    django.setup()


def main() -> int:
    _bootstrap_django()

    from invoice_engine.collaborators import load_ledger_client
    from invoice_engine.services.calculator import format_money
    from invoice_engine.services.errors import InvoicingError
    from invoice_engine.services.ledger import ChargeLedgerView

    counterparty = os.environ.get("COUNTERPARTY_ID")
    if not counterparty:
        print("COUNTERPARTY_ID is required")
        return 1
    direction = os.environ.get("DIRECTION", "receivable")

    view = ChargeLedgerView(load_ledger_client())
    try:
        view.load(counterparty, direction)
    except (InvoicingError, ValueError) as e:
        print(f"Could not load open charges: {e}")
        return 1

    groups = view.groups_by_container()
    print(f"{len(view.records)} open {direction} charges in {len(groups)} containers for {counterparty}")
    for key, records in groups.items():
        print(f"- {key or '(no container)'}")
        for r in records:
            print(f"    {r.id:<12} {r.fee_name:<32} {format_money(r.amount, r.currency):>16}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
