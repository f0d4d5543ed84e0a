from __future__ import annotations

from typing import Optional, Sequence


class ServiceError(RuntimeError):
    code = "error"


class NotFound(ServiceError):
    code = "not_found"


class PermissionDenied(ServiceError):
    code = "forbidden"


class AssignmentError(ServiceError):
    code = "assignment_error"


class InsufficientMembers(AssignmentError):
    code = "insufficient_members"

    def __init__(self, member_count: int, required: int = 2) -> None:
        self.member_count = member_count
        self.required = required
        super().__init__(
            f"At least {required} participants are required, got {member_count}."
        )


class InfeasibleConstraints(AssignmentError):
    code = "infeasible_constraints"

    def __init__(self, member_count: int, exclusion_count: int) -> None:
        self.member_count = member_count
        self.exclusion_count = exclusion_count
        super().__init__(
            f"Cannot find a valid assignment for {member_count} participants "
            f"with {exclusion_count} exclusion(s). Add more participants or remove some exclusions."
        )


class AlreadyDrawn(ServiceError):
    code = "already_drawn"

    def __init__(self, raffle_id: Optional[int] = None) -> None:
        self.raffle_id = raffle_id
        super().__init__("Names have already been drawn for this raffle.")


class ProfileIncomplete(ServiceError):
    code = "profile_incomplete"

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "The following participants must start a private chat with the bot: "
            + ", ".join(self.missing)
        )


class ExclusionError(ServiceError):
    code = "exclusion_error"


class DuplicateExclusion(ExclusionError):
    code = "duplicate_exclusion"


class SelfExclusion(ExclusionError):
    code = "self_exclusion"


class LockedError(ServiceError):
    code = "locked"


class RelayError(ServiceError):
    code = "relay_error"


class Unauthenticated(RelayError):
    code = "unauthenticated"


class NotDrawnYet(RelayError):
    code = "not_drawn"


class ValidationError(RelayError):
    code = "validation_error"


class RateLimited(RelayError):
    code = "rate_limited"

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"Too many messages. Retry in {retry_after:.1f}s.")
