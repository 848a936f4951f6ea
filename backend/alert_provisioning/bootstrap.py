from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alert_provisioning.infra.db import create_engine_from_settings, create_schema
from alert_provisioning.infra.logging import configure_logging
from alert_provisioning.services import ProvisioningServices, build_provisioning_services
from alert_provisioning.settings import Settings, settings

logger = logging.getLogger(__name__)


async def bootstrap(
    app_settings: Settings = settings,
    *,
    create_tables: bool | None = None,
) -> ProvisioningServices:
    """Configure logging, open the database and wire the provisioning services.

    Tables are created directly only in ``dev`` unless ``create_tables`` says
    otherwise; production schemas are managed by the deployment.
    """
    configure_logging(app_settings.log_level)
    engine = create_engine_from_settings(app_settings)
    if create_tables if create_tables is not None else app_settings.app_env == "dev":
        await create_schema(engine)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    services = build_provisioning_services(app_settings, session_factory=session_factory, engine=engine)
    logger.info(
        "provisioning_started",
        extra={
            "extra": {
                "database_url": app_settings.database_url,
                "base_interval_seconds": app_settings.base_interval_seconds,
                "default_interval_seconds": app_settings.default_interval_seconds,
                "metrics_enabled": app_settings.metrics_enabled,
            }
        },
    )
    return services
