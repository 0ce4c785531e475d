# SQLModel definitions, imported here so Alembic sees the full metadata.
from .base import UUIDMixin, TimestampMixin, CreatedAtMixin  # noqa: F401
from .notification import Notification  # noqa: F401
from .preference import NotificationPreference  # noqa: F401
from .subscription import ForumSubscription, ThreadSubscription  # noqa: F401
