# SQLModel definitions - imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .membership import OrganizationMember  # noqa: F401
from .invitation import Invitation  # noqa: F401
from .api_key import ApiKey  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
from .monitor import Monitor  # noqa: F401
from .subscription import Subscription  # noqa: F401
