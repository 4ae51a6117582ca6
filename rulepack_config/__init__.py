"""
rulepack_config -- rulepack definitions, lifecycle and the built-in registry.

Responsibility:
    Everything needed to turn a rulepack YAML file (or a persisted row's
    JSON columns) into an immutable ``Rulepack``: the schema, the loader,
    the checksum, the lifecycle state machine, the registry of bundled
    packs, and the runtime settings read from the environment.

Architecture position:
    Configuration -- sits above ``rulepack_kernel`` and below
    ``rulepack_engines`` / ``rulepack_services``.  The kernel MUST NEVER
    import from ``rulepack_config``.
"""

from rulepack_config.integrity import (
    RulepackIntegrityError,
    compute_checksum,
    rulepack_checksum,
    verify_checksum,
)
from rulepack_config.lifecycle import (
    ALLOWED_TRANSITIONS,
    RESOLVABLE_STATUSES,
    RulepackStatus,
    validate_reinstall,
    validate_transition,
)
from rulepack_config.loader import (
    dump_rulepack,
    load_rulepack_file,
    parse_rulepack,
    parse_transaction,
)
from rulepack_config.registry import (
    BuiltInRegistry,
    default_builtin_registry,
    load_builtin_registry,
)
from rulepack_config.schema import (
    Bracket,
    FilingBox,
    FilingSchema,
    FlatIncomeShape,
    NexusThreshold,
    PayrollShape,
    ProgressiveIncomeShape,
    RegressionCase,
    RegressionExpectation,
    RegressionSummary,
    Rulepack,
    RulepackMetadata,
    RulepackSource,
    SalesTaxShape,
    TaxRule,
    TransactionInput,
    TransactionType,
    VatShape,
)
from rulepack_config.settings import EngineSettings, load_settings

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Bracket",
    "BuiltInRegistry",
    "EngineSettings",
    "FilingBox",
    "FilingSchema",
    "FlatIncomeShape",
    "NexusThreshold",
    "PayrollShape",
    "ProgressiveIncomeShape",
    "RESOLVABLE_STATUSES",
    "RegressionCase",
    "RegressionExpectation",
    "RegressionSummary",
    "Rulepack",
    "RulepackIntegrityError",
    "RulepackMetadata",
    "RulepackSource",
    "RulepackStatus",
    "SalesTaxShape",
    "TaxRule",
    "TransactionInput",
    "TransactionType",
    "VatShape",
    "compute_checksum",
    "default_builtin_registry",
    "dump_rulepack",
    "load_builtin_registry",
    "load_rulepack_file",
    "load_settings",
    "parse_rulepack",
    "parse_transaction",
    "rulepack_checksum",
    "validate_reinstall",
    "validate_transition",
    "verify_checksum",
]
