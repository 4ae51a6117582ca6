"""
rulepack_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines: rulepack resolution
    against the database and the built-in registry, regression-gated
    installation, and the unit of work that makes installs atomic.

Architecture position:
    Services -- imperative shell.

    Dependency direction:
        rulepack_services/ -> rulepack_engines/, rulepack_config/,
                              rulepack_kernel/  (allowed)
        rulepack_engines/  -> rulepack_services/ (FORBIDDEN)
        rulepack_kernel/   -> rulepack_services/ (FORBIDDEN)

Invariants enforced:
    - This is the only layer that opens database sessions.
"""

from rulepack_services.bootstrap import RulepackServices, bootstrap
from rulepack_services.installation import (
    InstallationPipeline,
    InstallationPolicy,
    InstallationReport,
)
from rulepack_services.quoting import calculate_tax, calculate_tax_for_country
from rulepack_services.store import RegressionAudit, RulepackStore
from rulepack_services.unit_of_work import (
    InMemoryUnitOfWork,
    InMemoryUnitOfWorkFactory,
    RulepackRepository,
    SqlAlchemyUnitOfWork,
    SqlAlchemyUnitOfWorkFactory,
    UnitOfWork,
    UnitOfWorkFactory,
)

__all__ = [
    "InMemoryUnitOfWork",
    "InMemoryUnitOfWorkFactory",
    "InstallationPipeline",
    "InstallationPolicy",
    "InstallationReport",
    "RegressionAudit",
    "RulepackRepository",
    "RulepackServices",
    "RulepackStore",
    "SqlAlchemyUnitOfWork",
    "SqlAlchemyUnitOfWorkFactory",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "bootstrap",
    "calculate_tax",
    "calculate_tax_for_country",
]
