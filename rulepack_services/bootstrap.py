"""
Process wiring for the rulepack services.

``bootstrap`` turns an EngineSettings into a ready-to-use RulepackServices
container: logging configured, engine initialised, tables created and the
built-in registry loaded.  Nothing here is needed by callers that build
their own session factory and registry.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from rulepack_config.registry import BuiltInRegistry, load_builtin_registry
from rulepack_config.settings import EngineSettings, load_settings
from rulepack_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from rulepack_kernel.domain.clock import Clock, SystemClock
from rulepack_kernel.logging_config import configure_logging, get_logger
from rulepack_services.installation import InstallationPipeline
from rulepack_services.store import RulepackStore
from rulepack_services.unit_of_work import SqlAlchemyUnitOfWorkFactory

logger = get_logger("services.bootstrap")


@dataclass(frozen=True)
class RulepackServices:
    """Wired services sharing one session factory, registry and clock."""

    settings: EngineSettings
    session_factory: sessionmaker[Session]
    registry: BuiltInRegistry
    store: RulepackStore
    installer: InstallationPipeline
    clock: Clock


def bootstrap(settings: EngineSettings | None = None, clock: Clock | None = None) -> RulepackServices:
    """
    Initialise logging, the database and the registry from ``settings``.

    Args:
        settings: Defaults to ``load_settings()`` (environment variables).
        clock: Defaults to SystemClock.
    """
    settings = settings or load_settings()
    clock = clock or SystemClock()

    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url, echo=settings.sql_echo)
    create_tables()

    session_factory = get_session_factory()
    registry = load_builtin_registry(settings.sets_dir)

    services = RulepackServices(
        settings=settings,
        session_factory=session_factory,
        registry=registry,
        store=RulepackStore(session_factory, registry, clock),
        installer=InstallationPipeline(SqlAlchemyUnitOfWorkFactory(session_factory), clock),
        clock=clock,
    )
    logger.info(
        "rulepack_services_ready",
        extra={
            "builtin_rulepacks": len(registry),
            "jurisdictions": list(registry.jurisdictions()),
        },
    )
    return services
