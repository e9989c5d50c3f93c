"""Services package for the ledger.

This package provides:
- Allocation Registry (quota records)
- Identity Resolver (student tokens)
- Availability Calculator (per-allocation distribution summary)
- Redemption Orchestrator (the claim write path)
- Rollup Engine (school, student and government aggregates)
"""

from mealledger.app.services.allocation_registry import (
    AllocationRegistry,
    get_allocation_registry,
)
from mealledger.app.services.availability import (
    AvailabilityCalculator,
    DistributionSummary,
    remaining_portions,
)
from mealledger.app.services.claim_locks import (
    ClaimLockRegistry,
    get_claim_locks,
    reset_claim_locks,
)
from mealledger.app.services.identity import IdentityResolver
from mealledger.app.services.redemption import (
    RedemptionOrchestrator,
    RedemptionResult,
    get_redemption_orchestrator,
)
from mealledger.app.services.rollup import (
    RollupEngine,
    classify_activity,
    get_rollup_engine,
)

__all__ = [
    "AllocationRegistry",
    "get_allocation_registry",
    "AvailabilityCalculator",
    "DistributionSummary",
    "remaining_portions",
    "ClaimLockRegistry",
    "get_claim_locks",
    "reset_claim_locks",
    "IdentityResolver",
    "RedemptionOrchestrator",
    "RedemptionResult",
    "get_redemption_orchestrator",
    "RollupEngine",
    "classify_activity",
    "get_rollup_engine",
]
