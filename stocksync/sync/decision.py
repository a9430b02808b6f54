# stocksync/sync/decision.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

INSTOCK = "instock"
OUTOFSTOCK = "outofstock"


class Action(str, enum.Enum):
    NOOP = "noop"
    MARK_INSTOCK = "mark_instock"
    MARK_OUTOFSTOCK = "mark_outofstock"


@dataclass(frozen=True)
class SyncPolicy:
    sync_to_instock: bool = True
    sync_to_outofstock: bool = True


DEFAULT_POLICY = SyncPolicy()


@dataclass(frozen=True)
class Decision:
    action: Action
    target_status: str


def target_status(net_stock: int) -> str:
    # negative (oversold/backordered) counts as nothing to sell
    return INSTOCK if net_stock > 0 else OUTOFSTOCK


def decide(net_stock: int, previous_status: Optional[str], policy: SyncPolicy = DEFAULT_POLICY) -> Decision:
    """
    Pure mapping of (net stock, storefront's current status) to the update to make.
    Any previous status other than the target (onbackorder, None, ...) needs an update.
    """
    target = target_status(net_stock)
    if (previous_status or "").strip().lower() == target:
        return Decision(Action.NOOP, target)
    if target == INSTOCK:
        if not policy.sync_to_instock:
            return Decision(Action.NOOP, target)
        return Decision(Action.MARK_INSTOCK, target)
    if not policy.sync_to_outofstock:
        return Decision(Action.NOOP, target)
    return Decision(Action.MARK_OUTOFSTOCK, target)
