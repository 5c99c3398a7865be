from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from searchgate.app.dispatch.contracts import LoadBalancingConfig
from searchgate.app.dispatch.service import Dispatcher
from searchgate.app.saturation.contracts import SaturationCriteria
from searchgate.app.saturation.service import SaturationGate


@dataclass
class BranchEngine:
    """One branch's private decision state: its dispatcher and saturation gate."""

    branch_id: str
    dispatcher: Dispatcher
    gate: SaturationGate


def create_branch_engine(
    load_balancing: LoadBalancingConfig,
    criteria: SaturationCriteria,
    branch_id: str | None = None,
    clock: Callable[[], float] = time.time,
) -> BranchEngine:
    return BranchEngine(
        branch_id=branch_id or f"branch-{uuid4().hex[:12]}",
        dispatcher=Dispatcher(load_balancing, clock=clock),
        gate=SaturationGate(criteria),
    )
