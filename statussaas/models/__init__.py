# Import every model so Alembic autogenerate sees the full schema.

from statussaas.models.user import User  # noqa: F401
from statussaas.models.plan import SubscriptionPlan  # noqa: F401
from statussaas.models.page import MaintenancePage, PageViewDay  # noqa: F401
from statussaas.models.cloudflare_config import CloudflareConfig  # noqa: F401
from statussaas.models.incident import Incident, IncidentUpdate  # noqa: F401
from statussaas.models.activity import ActivityEvent  # noqa: F401
from statussaas.models.stripe_event import StripeEvent  # noqa: F401
