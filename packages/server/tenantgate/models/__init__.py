# SQLModel definitions, imported here so create_all sees every table.
from .base import UUIDMixin, TimestampMixin, OrgScopedMixin, EditorsMixin, SoftDeleteMixin  # noqa: F401
from .user import User  # noqa: F401
from .organization import Organization  # noqa: F401
from .org_member import OrgMember  # noqa: F401
from .org_invite import OrgInvite, OrgJoinRequest  # noqa: F401
from .project import Project  # noqa: F401
from .task import Task  # noqa: F401
from .wiki import Wiki  # noqa: F401
