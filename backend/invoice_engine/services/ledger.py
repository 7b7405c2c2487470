from __future__ import annotations

import logging
import re
from collections import OrderedDict
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from ..dataclasses import ChargeRecord, Direction, LedgerToken
from .errors import ValidationError
from .utils import norm_key

logger = logging.getLogger(__name__)

_KEYWORD_SPLIT = re.compile(r"[\s,;]+")


def parse_keywords(text: Optional[str]) -> List[str]:
    """Split a pasted filter string (one container per line, commas, etc.)."""
    return [k for k in _KEYWORD_SPLIT.split(text or "") if k]


class SelectionModel:
    """Selected keys shared by the ledger view and the import dialog.

    Ledger rows are keyed by charge id; import rows with no ledger match use
    their own row key, so both flows read and write the same state.
    """

    def __init__(self) -> None:
        self._selected: Set[str] = set()

    def is_selected(self, key: str) -> bool:
        return key in self._selected

    def set(self, key: str, value: bool) -> None:
        if value:
            self._selected.add(key)
        else:
            self._selected.discard(key)

    def toggle(self, key: str) -> bool:
        self.set(key, not self.is_selected(key))
        return self.is_selected(key)

    def retain(self, keys: Iterable[str]) -> None:
        self._selected &= set(keys)

    def clear(self) -> None:
        self._selected.clear()

    def keys(self) -> Set[str]:
        return set(self._selected)

    def restore(self, keys: Iterable[str]) -> None:
        self._selected = set(keys)

    def __len__(self) -> int:
        return len(self._selected)


class ChargeLedgerView:
    """Local, read-only view over one counterparty's open charges.

    Nothing here writes to the ledger service. Fetches are tagged with a
    ``LedgerToken`` and a result is only applied while its token is current,
    so a slow response for a previous counterparty can never overwrite the
    active one.
    """

    def __init__(self, client, display_window: Optional[int] = None, selection: Optional[SelectionModel] = None):
        self.client = client
        if display_window is None:
            from ..conf import invoicing_setting
            display_window = int(invoicing_setting("DISPLAY_WINDOW"))
        self.display_window = display_window
        self.selection = selection if selection is not None else SelectionModel()
        self.records: List[ChargeRecord] = []
        self.keywords: List[str] = []
        self.exact_match = False
        self._token: Optional[LedgerToken] = None
        self._generation = 0
        self._fresh = False
        self._container_undo: Dict[str, Tuple[FrozenSet[str], FrozenSet[str]]] = {}

    # ---- loading ----

    @property
    def token(self) -> Optional[LedgerToken]:
        return self._token

    @property
    def counterparty_id(self) -> Optional[str]:
        return self._token.counterparty_id if self._token else None

    @property
    def direction(self) -> Optional[Direction]:
        return self._token.direction if self._token else None

    def begin_load(self, counterparty_id: str, direction: Direction) -> LedgerToken:
        """Start a fetch; any result still in flight for an older token goes stale."""
        direction = Direction(direction)
        if self._token is None or (self._token.counterparty_id, self._token.direction) != (counterparty_id, direction):
            self.records = []
            self.selection.clear()
            self.keywords = []
            self.exact_match = False
        self._container_undo.clear()
        self._generation += 1
        self._token = LedgerToken(counterparty_id=counterparty_id, direction=direction, generation=self._generation)
        self._fresh = False
        return self._token

    def is_current(self, token: LedgerToken) -> bool:
        return token == self._token

    def apply_result(self, token: LedgerToken, records: Iterable[ChargeRecord]) -> bool:
        if not self.is_current(token):
            logger.info("Discarding stale ledger result for %s/%s (generation %s)",
                        token.counterparty_id, token.direction.value, token.generation)
            return False
        previous = {r.id for r in self.records}
        self.records = [r for r in records if r.is_selectable]
        gone = previous - {r.id for r in self.records}
        if gone:
            logger.info("%d previously open charges are no longer offered", len(gone))
        self.selection.retain(r.id for r in self.records)
        self._fresh = True
        return True

    def load(self, counterparty_id: str, direction: Direction) -> List[ChargeRecord]:
        """Always asks the ledger service; there is no cached reuse."""
        token = self.begin_load(counterparty_id, direction)
        records = self.client.list_open_charges(counterparty_id, token.direction, exclude_invoiced=True)
        self.apply_result(token, records)
        logger.info("Loaded %d open %s charges for counterparty %s",
                    len(self.records), token.direction.value, counterparty_id)
        return list(self.records)

    def invalidate(self) -> None:
        """Mark the open set as outdated, e.g. right after an invoice was issued."""
        self._fresh = False

    @property
    def is_fresh(self) -> bool:
        return self._fresh

    def require_fresh(self) -> None:
        if not self._fresh:
            raise ValidationError("Open charges must be reloaded before composing a new invoice")

    # ---- selection ----

    def get(self, charge_id: str) -> Optional[ChargeRecord]:
        for record in self.records:
            if record.id == charge_id:
                return record
        return None

    def is_selected(self, charge_id: str) -> bool:
        return self.selection.is_selected(charge_id)

    def toggle(self, charge_id: str) -> bool:
        if self.get(charge_id) is None:
            raise ValidationError(f"Charge {charge_id} is not an open charge of this counterparty")
        return self.selection.toggle(charge_id)

    def set_selected(self, charge_ids: Iterable[str], value: bool = True) -> None:
        known = {r.id for r in self.records}
        for charge_id in charge_ids:
            if charge_id in known:
                self.selection.set(charge_id, value)

    def toggle_by_container(self, container_key: str) -> bool:
        """Select the whole group unless it is already fully selected.

        Toggling the same group again with nothing changed in between puts
        back the selection it had before, including a partial one.
        """
        key = norm_key(container_key)
        group = self.groups_by_container().get(key, [])
        if not group:
            return False
        ids = [r.id for r in group]
        current = frozenset(i for i in ids if self.selection.is_selected(i))
        undo = self._container_undo.pop(key, None)
        if undo is not None and undo[1] == current:
            for charge_id in ids:
                self.selection.set(charge_id, charge_id in undo[0])
            return len(undo[0]) == len(ids)
        target = len(current) != len(ids)
        for charge_id in ids:
            self.selection.set(charge_id, target)
        self._container_undo[key] = (current, frozenset(ids) if target else frozenset())
        return target

    def selected_records(self) -> List[ChargeRecord]:
        return [r for r in self.records if self.selection.is_selected(r.id)]

    # ---- filtering / display ----

    def filter(self, keywords: Optional[Iterable[str]] = None) -> List[ChargeRecord]:
        """OR across keywords; each is a case-insensitive substring of container or shipment number.

        Without explicit keywords the current filter applies; after
        ``narrow_to`` its keys must equal the container or shipment number.
        """
        exact = keywords is None and self.exact_match
        words = [k.strip().lower() for k in (keywords if keywords is not None else self.keywords) if k and k.strip()]
        if not words:
            return list(self.records)
        out = []
        for record in self.records:
            container = (record.container_number or "").strip().lower()
            shipment = (record.shipment_number or "").strip().lower()
            if exact:
                hit = any(w == container or w == shipment for w in words)
            else:
                hit = any(w in container or w in shipment for w in words)
            if hit:
                out.append(record)
        return out

    def visible(self, keywords: Optional[Iterable[str]] = None) -> List[ChargeRecord]:
        """Rows to render; only the unfiltered list is capped."""
        words = list(keywords) if keywords is not None else list(self.keywords)
        rows = self.filter(None if keywords is None else words)
        if not [w for w in words if w and w.strip()] and self.display_window:
            return rows[: self.display_window]
        return rows

    def search(self, keywords: Iterable[str]) -> None:
        """Set a substring keyword filter, as typed or pasted by the user."""
        self.keywords = [k for k in keywords if k and k.strip()]
        self.exact_match = False

    def narrow_to(self, keys: Iterable[str]) -> None:
        """Show only rows whose container or shipment number is one of ``keys``."""
        self.keywords = [k for k in dict.fromkeys(keys) if k]
        self.exact_match = True

    def clear_filter(self) -> None:
        self.keywords = []
        self.exact_match = False

    def groups_by_container(self) -> "OrderedDict[str, List[ChargeRecord]]":
        groups: "OrderedDict[str, List[ChargeRecord]]" = OrderedDict()
        for record in self.records:
            groups.setdefault(record.container_key, []).append(record)
        return groups

    def group_summary(self) -> List[Dict[str, object]]:
        summary = []
        for key, records in self.groups_by_container().items():
            summary.append({
                "key": key,
                "total": len(records),
                "selected": sum(1 for r in records if self.selection.is_selected(r.id)),
            })
        return summary
