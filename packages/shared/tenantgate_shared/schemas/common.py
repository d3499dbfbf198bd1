from enum import Enum


class OrgRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    NONE = "none"


# Total order used by every role threshold check
ROLE_LEVEL: dict[OrgRole, int] = {
    OrgRole.NONE: 0,
    OrgRole.MEMBER: 1,
    OrgRole.ADMIN: 2,
    OrgRole.OWNER: 3,
}


class OrgStatus(str, Enum):
    ACTIVE = "active"
    DELETING = "deleting"


class JoinRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ErrorCode(str, Enum):
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    NOT_ORG_MEMBER = "NOT_ORG_MEMBER"
    INSUFFICIENT_ORG_ROLE = "INSUFFICIENT_ORG_ROLE"
    FORBIDDEN = "FORBIDDEN"
    CANNOT_MODIFY_OWNER = "CANNOT_MODIFY_OWNER"
    CANNOT_MODIFY_ADMIN = "CANNOT_MODIFY_ADMIN"
    MUST_TRANSFER_OWNERSHIP = "MUST_TRANSFER_OWNERSHIP"
    TARGET_MUST_BE_ADMIN = "TARGET_MUST_BE_ADMIN"
    ALREADY_ORG_MEMBER = "ALREADY_ORG_MEMBER"
    JOIN_REQUEST_EXISTS = "JOIN_REQUEST_EXISTS"
    INVITE_EXPIRED = "INVITE_EXPIRED"
    INVALID_INVITE = "INVALID_INVITE"
    ORG_SLUG_TAKEN = "ORG_SLUG_TAKEN"
    RATE_LIMITED = "RATE_LIMITED"
    CONFLICT = "CONFLICT"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NOT_AUTHENTICATED: "Please log in",
    ErrorCode.NOT_ORG_MEMBER: "Not a member of this organization",
    ErrorCode.INSUFFICIENT_ORG_ROLE: "Insufficient permissions",
    ErrorCode.FORBIDDEN: "Forbidden",
    ErrorCode.CANNOT_MODIFY_OWNER: "Cannot modify the owner",
    ErrorCode.CANNOT_MODIFY_ADMIN: "Admins cannot modify other admins",
    ErrorCode.MUST_TRANSFER_OWNERSHIP: "Must transfer ownership before leaving",
    ErrorCode.TARGET_MUST_BE_ADMIN: "Can only transfer ownership to an admin",
    ErrorCode.ALREADY_ORG_MEMBER: "Already a member of this organization",
    ErrorCode.JOIN_REQUEST_EXISTS: "Join request already exists",
    ErrorCode.INVITE_EXPIRED: "Invite has expired",
    ErrorCode.INVALID_INVITE: "Invalid invite",
    ErrorCode.ORG_SLUG_TAKEN: "Organization slug already taken",
    ErrorCode.RATE_LIMITED: "Too many requests",
    ErrorCode.CONFLICT: "Conflict detected",
    ErrorCode.VALIDATION_FAILED: "Validation failed",
    ErrorCode.NOT_FOUND: "Not found",
    ErrorCode.LIMIT_EXCEEDED: "Limit exceeded",
}
