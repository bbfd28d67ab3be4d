"""IPERC risk scoring (probability x severity -> risk tier).

Provides standardized risk scoring for every IPERC line. Values are derived,
never stored: callers recompute them from the four probability factors and
the severity index whenever a line is read.

Provides:
- RiskTier: Ordered enum of risk tiers (Trivial .. Intolerable)
- RiskScore: Result of scoring one line
- score: Probability index, risk value and tier from raw factors
- classify: Risk tier for a risk value
- validate_factor: Range check for a single factor
- validate_line: Re-validate a stored line, reporting its number
- matrix_level: Qualitative 5x5 likelihood x consequence lookup
- tier_counts: Lines per tier for dashboards
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from sstcore.core.errors import OutOfRange

FACTOR_MIN = 1
FACTOR_MAX = 5

# Inclusive upper bounds for Trivial, Tolerable, Moderado, Importante.
DEFAULT_TIER_THRESHOLDS: tuple[int, int, int, int] = (5, 10, 15, 20)


class RiskTier(str, Enum):
    """Risk tier of an IPERC line, ordered from lowest to highest."""

    TRIVIAL = "Trivial"
    TOLERABLE = "Tolerable"
    MODERATE = "Moderado"
    IMPORTANT = "Importante"
    INTOLERABLE = "Intolerable"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [
    RiskTier.TRIVIAL,
    RiskTier.TOLERABLE,
    RiskTier.MODERATE,
    RiskTier.IMPORTANT,
    RiskTier.INTOLERABLE,
]


@dataclass(frozen=True)
class RiskScore:
    """Derived values for one risk line."""

    probability_index: int
    risk_value: int
    risk_tier: RiskTier


def validate_factor(name: str, value: object) -> int:
    """Check that a factor or severity is an integer in [1, 5].

    Args:
        name: Field name used in the error
        value: Raw input

    Returns:
        The value, unchanged

    Raises:
        OutOfRange: If value is not an int (bools rejected) or outside [1, 5]
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise OutOfRange(name, value, FACTOR_MIN, FACTOR_MAX)
    if value < FACTOR_MIN or value > FACTOR_MAX:
        raise OutOfRange(name, value, FACTOR_MIN, FACTOR_MAX)
    return value


def classify(risk_value: int, thresholds: Sequence[int] | None = None) -> RiskTier:
    """Map a risk value to its tier.

    Step function over the inclusive upper bounds in ``thresholds``; a
    larger value never maps to a lower tier.

    Args:
        risk_value: probability_index x severity
        thresholds: Four strictly increasing upper bounds (default 5/10/15/20)

    Returns:
        RiskTier for the value

    Example:
        >>> classify(4)
        <RiskTier.TRIVIAL: 'Trivial'>
        >>> classify(50)
        <RiskTier.INTOLERABLE: 'Intolerable'>
    """
    bounds = tuple(thresholds) if thresholds is not None else DEFAULT_TIER_THRESHOLDS
    for tier, upper in zip(_TIER_ORDER, bounds):
        if risk_value <= upper:
            return tier
    return RiskTier.INTOLERABLE


def score(
    a: int,
    b: int,
    c: int,
    d: int,
    severity: int,
    thresholds: Sequence[int] | None = None,
) -> RiskScore:
    """Score one risk line.

    Args:
        a: People exposed factor
        b: Existing procedures factor
        c: Training factor
        d: Exposure frequency factor
        severity: Severity index
        thresholds: Optional tier bounds override (see classify)

    Returns:
        RiskScore with probability_index (4-20), risk_value (4-100) and tier

    Raises:
        OutOfRange: If any input is outside [1, 5]; inputs are never clamped

    Example:
        >>> score(3, 2, 4, 1, 5)
        RiskScore(probability_index=10, risk_value=50, risk_tier=<RiskTier.INTOLERABLE: 'Intolerable'>)
    """
    validate_factor("probability_a", a)
    validate_factor("probability_b", b)
    validate_factor("probability_c", c)
    validate_factor("probability_d", d)
    validate_factor("severity", severity)

    probability_index = a + b + c + d
    risk_value = probability_index * severity
    return RiskScore(
        probability_index=probability_index,
        risk_value=risk_value,
        risk_tier=classify(risk_value, thresholds),
    )


def validate_line(line, thresholds: Sequence[int] | None = None) -> RiskScore:
    """Re-validate and score a stored risk line.

    Args:
        line: Object with probability_a..d, severity and number attributes
        thresholds: Optional tier bounds override

    Raises:
        OutOfRange: Field name is prefixed with the line number
    """
    number = getattr(line, "number", "?")
    values = {
        "probability_a": line.probability_a,
        "probability_b": line.probability_b,
        "probability_c": line.probability_c,
        "probability_d": line.probability_d,
        "severity": line.severity,
    }
    for name, value in values.items():
        validate_factor(f"line {number} {name}", value)
    return score(*values.values(), thresholds=thresholds)


class Likelihood(str, Enum):
    """Qualitative likelihood used by standalone risk evaluations."""

    VERY_LOW = "Muy Baja"
    LOW = "Baja"
    MEDIUM = "Media"
    HIGH = "Alta"
    VERY_HIGH = "Muy Alta"


class Consequence(str, Enum):
    """Qualitative consequence used by standalone risk evaluations."""

    INSIGNIFICANT = "Insignificante"
    MINOR = "Menor"
    MODERATE = "Moderada"
    MAJOR = "Mayor"
    CATASTROPHIC = "Catastrófica"


_T, _TO, _M, _I, _X = (
    RiskTier.TRIVIAL,
    RiskTier.TOLERABLE,
    RiskTier.MODERATE,
    RiskTier.IMPORTANT,
    RiskTier.INTOLERABLE,
)

# Rows: likelihood (very low -> very high); columns: consequence (insignificant -> catastrophic)
_QUALITATIVE_MATRIX = {
    Likelihood.VERY_LOW: (_T, _T, _TO, _TO, _M),
    Likelihood.LOW: (_T, _TO, _TO, _M, _I),
    Likelihood.MEDIUM: (_TO, _TO, _M, _I, _X),
    Likelihood.HIGH: (_TO, _M, _I, _X, _X),
    Likelihood.VERY_HIGH: (_M, _I, _X, _X, _X),
}


def matrix_level(likelihood: Likelihood, consequence: Consequence) -> RiskTier:
    """Look up the qualitative 5x5 risk matrix.

    Args:
        likelihood: Qualitative likelihood
        consequence: Qualitative consequence

    Returns:
        RiskTier at the matrix cell
    """
    column = list(Consequence).index(Consequence(consequence))
    return _QUALITATIVE_MATRIX[Likelihood(likelihood)][column]


def tier_counts(scores: Iterable[RiskScore]) -> dict[RiskTier, int]:
    """Count scored lines per tier, including empty tiers."""
    counts = {tier: 0 for tier in _TIER_ORDER}
    for item in scores:
        counts[item.risk_tier] += 1
    return counts
