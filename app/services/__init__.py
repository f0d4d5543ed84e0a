from app.services.assignment import generate_assignments
from app.services.errors import (
    AlreadyDrawn,
    AssignmentError,
    InfeasibleConstraints,
    InsufficientMembers,
    LockedError,
    NotDrawnYet,
    ServiceError,
    Unauthenticated,
    ValidationError,
)
from app.services.exclusions import ExclusionPair, ExclusionSet

__all__ = [
    "AlreadyDrawn",
    "AssignmentError",
    "ExclusionPair",
    "ExclusionSet",
    "InfeasibleConstraints",
    "InsufficientMembers",
    "LockedError",
    "NotDrawnYet",
    "ServiceError",
    "Unauthenticated",
    "ValidationError",
    "generate_assignments",
]
