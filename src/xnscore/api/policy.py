"""XnScore API RBAC/ABAC policy definitions and enforcement.

Deny-by-default authorization:
- RBAC roles: MEMBER, ADMIN, INTEGRATION_SERVICE, AUDITOR
- ABAC constraint: a caller holding only the MEMBER role may act on its own
  member id only (member-scoped operations)
- policy_check(actor_id, roles, operation_id, member_id) is evaluated by the
  route dependency before any handler runs

Policy highlights:
- Only INTEGRATION_SERVICE and ADMIN can register members, upsert circles
  and append events
- Vouches and endorsements are issued by members (Elders) or ADMIN
- AUDITOR cannot perform mutations (read-only role)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Set


class Role(str, Enum):
    """RBAC roles.

    - MEMBER: End users of the savings-circle app (Elders included)
    - ADMIN: Operators; may revoke any vouch
    - INTEGRATION_SERVICE: Trusted internal callers that submit events
    - AUDITOR: Read-only compliance role
    """

    MEMBER = "MEMBER"
    ADMIN = "ADMIN"
    INTEGRATION_SERVICE = "INTEGRATION_SERVICE"
    AUDITOR = "AUDITOR"


ALL_ROLES: frozenset[str] = frozenset(r.value for r in Role)
INTEGRATION_WRITERS: frozenset[str] = frozenset(
    {Role.INTEGRATION_SERVICE.value, Role.ADMIN.value}
)
MEMBER_WRITERS: frozenset[str] = frozenset({Role.MEMBER.value, Role.ADMIN.value})
ADVANCE_REQUESTERS: frozenset[str] = frozenset(
    {Role.MEMBER.value, Role.ADMIN.value, Role.INTEGRATION_SERVICE.value}
)
PRIVILEGED_ROLES: frozenset[str] = frozenset(
    {Role.ADMIN.value, Role.INTEGRATION_SERVICE.value, Role.AUDITOR.value}
)


@dataclass(frozen=True, slots=True)
class PolicyRule:
    """Policy rule for an API operation.

    Attributes:
        allowed_roles: Set of roles that can invoke this operation.
        is_mutation: True if this operation modifies state (AUDITOR blocked).
        is_member_scoped: True if MEMBER-only callers are restricted to their own id.
    """

    allowed_roles: frozenset[str]
    is_mutation: bool = False
    is_member_scoped: bool = False


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    """Result of policy_check evaluation."""

    allow: bool
    code: str
    message: str
    details: dict[str, str | list[str]] | None = None


POLICY_RULES: dict[str, PolicyRule] = {
    "getMemberScore": PolicyRule(allowed_roles=ALL_ROLES, is_member_scoped=True),
    "getMemberTier": PolicyRule(allowed_roles=ALL_ROLES, is_member_scoped=True),
    "listMemberVouches": PolicyRule(allowed_roles=ALL_ROLES, is_member_scoped=True),
    "checkEligibility": PolicyRule(allowed_roles=ALL_ROLES, is_member_scoped=True),
    "createMember": PolicyRule(allowed_roles=INTEGRATION_WRITERS, is_mutation=True),
    "appendScoreEvent": PolicyRule(allowed_roles=INTEGRATION_WRITERS, is_mutation=True),
    "issueVouch": PolicyRule(
        allowed_roles=MEMBER_WRITERS, is_mutation=True, is_member_scoped=True
    ),
    "revokeVouch": PolicyRule(allowed_roles=MEMBER_WRITERS, is_mutation=True),
    "createEndorsement": PolicyRule(
        allowed_roles=MEMBER_WRITERS, is_mutation=True, is_member_scoped=True
    ),
    "requestAdvance": PolicyRule(
        allowed_roles=ADVANCE_REQUESTERS, is_mutation=True, is_member_scoped=True
    ),
    "upsertCircle": PolicyRule(allowed_roles=INTEGRATION_WRITERS, is_mutation=True),
    "getCircle": PolicyRule(allowed_roles=ALL_ROLES),
}


def policy_check(
    *,
    actor_id: str,
    roles: Set[str],
    operation_id: str,
    member_id: str | None = None,
) -> PolicyDecision:
    """Evaluate RBAC/ABAC policy for a request.

    1. Operation must be in POLICY_RULES (deny unknown operations)
    2. Actor must have at least one allowed role
    3. AUDITOR role cannot perform mutations
    4. Member-scoped operations by MEMBER-only callers must target the caller

    Args:
        actor_id: Actor ID from auth context (required).
        roles: Set of roles from auth context.
        operation_id: Operation being invoked.
        member_id: Member the operation acts on, if any.

    Returns:
        PolicyDecision with allow=True or allow=False with denial reason.
    """
    if not actor_id:
        return PolicyDecision(
            allow=False,
            code="RBAC_DENIED",
            message="Missing actor identity",
            details={"reason": "actor_id is required"},
        )

    if not roles:
        return PolicyDecision(
            allow=False,
            code="RBAC_DENIED",
            message="No roles assigned to actor",
            details={"actor_id": actor_id},
        )

    rule = POLICY_RULES.get(operation_id)
    if rule is None:
        return PolicyDecision(
            allow=False,
            code="RBAC_DENIED",
            message="Operation not permitted",
            details={"operation_id": operation_id, "reason": "unknown_operation"},
        )

    actor_roles = set(roles)
    allowed_roles = set(rule.allowed_roles)
    if not actor_roles & allowed_roles:
        return PolicyDecision(
            allow=False,
            code="RBAC_DENIED",
            message="Insufficient privileges for this operation",
            details={
                "operation_id": operation_id,
                "required_roles": sorted(allowed_roles),
                "actor_roles": sorted(actor_roles),
            },
        )

    if rule.is_mutation and actor_roles == {Role.AUDITOR.value}:
        return PolicyDecision(
            allow=False,
            code="RBAC_DENIED",
            message="AUDITOR role cannot perform mutations",
            details={"operation_id": operation_id, "reason": "auditor_read_only"},
        )

    if (
        rule.is_member_scoped
        and member_id is not None
        and not actor_roles & PRIVILEGED_ROLES
        and member_id != actor_id
    ):
        return PolicyDecision(
            allow=False,
            code="ABAC_DENIED",
            message="Members may only act on their own account",
            details={"operation_id": operation_id, "reason": "not_self"},
        )

    return PolicyDecision(allow=True, code="ALLOWED", message="Access granted")


def get_all_operation_ids() -> frozenset[str]:
    """Return all operation ids defined in the policy rules."""
    return frozenset(POLICY_RULES.keys())
