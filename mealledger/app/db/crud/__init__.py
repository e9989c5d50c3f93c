"""CRUD operations package.

- reference.py: School, Menu and Student lookups (read only)
- allocation.py: Allocation quota records
- claim.py: Claim ledger writes and aggregates
"""

# Reference lookups
from mealledger.app.db.crud.reference import (
    count_students,
    count_students_by_school,
    get_menu,
    get_school,
    get_student_by_id,
    get_student_by_number,
    list_schools_for_government,
    list_students,
)

# Allocation operations
from mealledger.app.db.crud.allocation import (
    allocated_by_menu,
    allocation_totals,
    create_allocation,
    delete_allocation,
    find_duplicate_allocation,
    get_allocation,
    list_allocations,
    list_school_allocations_on,
    lock_allocation,
    update_allocation,
)

# Ledger operations
from mealledger.app.db.crud.claim import (
    ClaimAggregate,
    ClaimFilter,
    aggregate_claims,
    aggregate_claims_by,
    count_claims,
    has_claim,
    insert_claim,
    list_claim_points,
    list_school_claims,
    list_student_claims,
)

__all__ = [
    # Reference lookups
    "count_students",
    "count_students_by_school",
    "get_menu",
    "get_school",
    "get_student_by_id",
    "get_student_by_number",
    "list_schools_for_government",
    "list_students",
    # Allocation operations
    "allocated_by_menu",
    "allocation_totals",
    "create_allocation",
    "delete_allocation",
    "find_duplicate_allocation",
    "get_allocation",
    "list_allocations",
    "list_school_allocations_on",
    "lock_allocation",
    "update_allocation",
    # Ledger operations
    "ClaimAggregate",
    "ClaimFilter",
    "aggregate_claims",
    "aggregate_claims_by",
    "count_claims",
    "has_claim",
    "insert_claim",
    "list_claim_points",
    "list_school_claims",
    "list_student_claims",
]
