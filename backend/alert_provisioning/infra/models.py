"""Central registry for SQLAlchemy models.

Importing this module loads every ORM class so that ``Base.metadata`` knows
all tables before ``create_schema`` runs.
"""

from alert_provisioning.domain.alert_rules import db_models as alert_rule_db_models  # noqa: F401
from alert_provisioning.domain.provenance import db_models as provenance_db_models  # noqa: F401
