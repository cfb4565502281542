"""Hold policy configuration objects.

Explicit configuration for every number that moves money. Nothing in the
calculators or services falls back to a silent default: the defaults live
here, documented, and an engine instance is built from one EngineConfig.

Pattern:
    engine = PaymentHoldEngine(
        session_factory,
        config=EngineConfig(
            fault=FaultPolicy(...),
            calculator=CalculatorPolicy(...),
            retry=RetryPolicy(...),
        ),
    )

Rules:
    1. No env vars. Financial behaviour is explicit.
    2. Immutable after creation (frozen dataclasses).
    3. Validated on construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

NOT_OPERATOR_FAULT_TYPES = frozenset(
    {
        "fabric_hole",
        "color_issue",
        "cutting_pattern",
        "size_issue",
        "material_defect",
    }
)

OPERATOR_ERROR_TYPES = frozenset(
    {
        "stitching_defect",
        "needle_damage",
        "tension_issue",
        "alignment_error",
    }
)


def _default_penalty_rates() -> Mapping[str, Decimal]:
    return MappingProxyType(
        {
            "minor": Decimal("0.10"),
            "major": Decimal("0.25"),
            "severe": Decimal("0.50"),
        }
    )


@dataclass(frozen=True)
class FaultPolicy:
    """
    Fault attribution tables.

    Attributes:
        not_operator_fault_types: Damage types that are never the operator's
            responsibility (material, cutting, dyeing). Full pay.
        operator_error_types: Damage types caused by the operator.
        penalty_rates: Deduction fraction per severity for operator errors.
        default_severity: Severity applied when a report carries none.
            Default "minor".
        unknown_type_penalty: Deduction fraction for damage types in neither
            table. Unknown types count as operator error. Default 0.10.
        unknown_severity_penalty: Deduction fraction for a severity missing
            from penalty_rates. Default 0.10.
    """

    not_operator_fault_types: frozenset[str] = NOT_OPERATOR_FAULT_TYPES
    operator_error_types: frozenset[str] = OPERATOR_ERROR_TYPES
    penalty_rates: Mapping[str, Decimal] = field(default_factory=_default_penalty_rates)
    default_severity: str = "minor"
    unknown_type_penalty: Decimal = Decimal("0.10")
    unknown_severity_penalty: Decimal = Decimal("0.10")

    def __post_init__(self) -> None:
        """Validate configuration."""
        overlap = self.not_operator_fault_types & self.operator_error_types
        if overlap:
            raise ValueError(f"damage types classified both ways: {sorted(overlap)}")
        if self.default_severity not in self.penalty_rates:
            raise ValueError("default_severity must have a penalty rate")
        rates = [*self.penalty_rates.values(), self.unknown_type_penalty, self.unknown_severity_penalty]
        for rate in rates:
            if rate < 0 or rate > 1:
                raise ValueError("penalty rates must be between 0 and 1")


@dataclass(frozen=True)
class CalculatorPolicy:
    """
    Bundle payment calculation parameters.

    Attributes:
        defective_piece_penalty: Fraction of rate charged per permanently
            defective piece. Default 0.5.
        quality_threshold: Quality score below which a proportional penalty
            applies. Default 80.
        quality_penalty_factor: Scale of the proportional quality penalty.
            Default 0.1.
        bonus_quality_threshold: Minimum quality score for the efficiency
            bonus. Default 95.
        efficiency_bonus_rate: Bonus fraction of total bundle value when the
            bundle needed rework and still scored well. Capped at 0.05.
    """

    defective_piece_penalty: Decimal = Decimal("0.5")
    quality_threshold: Decimal = Decimal("80")
    quality_penalty_factor: Decimal = Decimal("0.1")
    bonus_quality_threshold: Decimal = Decimal("95")
    efficiency_bonus_rate: Decimal = Decimal("0.05")

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not Decimal("0") <= self.efficiency_bonus_rate <= Decimal("0.05"):
            raise ValueError("efficiency_bonus_rate must be between 0 and 0.05")
        if not Decimal("0") <= self.defective_piece_penalty <= Decimal("1"):
            raise ValueError("defective_piece_penalty must be between 0 and 1")
        if not Decimal("0") <= self.quality_threshold <= Decimal("100"):
            raise ValueError("quality_threshold must be between 0 and 100")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Store access limits.

    Attributes:
        max_retries: Retries for ConcurrencyConflict/StoreUnavailable before
            the error surfaces. Default 3.
        base_delay_seconds: First backoff delay, doubled per attempt.
        max_delay_seconds: Backoff ceiling.
        store_timeout_seconds: Bound on a single transaction. Default 5.
    """

    max_retries: int = 3
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    store_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.store_timeout_seconds <= 0:
            raise ValueError("store_timeout_seconds must be positive")

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retry number `attempt` (0-based)."""
        return min(self.max_delay_seconds, self.base_delay_seconds * (2**attempt))


@dataclass(frozen=True)
class EngineConfig:
    """
    Top-level engine configuration.

    Attributes:
        fault: Fault attribution tables.
        calculator: Payment calculation parameters.
        retry: Store retry and timeout limits.
        rework_due_hours: Default rework due date offset. Default 24.
    """

    fault: FaultPolicy = field(default_factory=FaultPolicy)
    calculator: CalculatorPolicy = field(default_factory=CalculatorPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    rework_due_hours: int = 24

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.rework_due_hours < 1:
            raise ValueError("rework_due_hours must be at least 1")
