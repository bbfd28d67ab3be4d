"""Unit tests for IPERC risk scoring.

Covers the arithmetic over the whole input domain, tier monotonicity,
range validation and the qualitative 5x5 matrix.
"""

import itertools

import pytest

from sstcore.core.documents import RiskLine
from sstcore.core.errors import OutOfRange, ValidationError
from sstcore.core.scoring import (
    Consequence,
    Likelihood,
    RiskTier,
    classify,
    matrix_level,
    score,
    tier_counts,
    validate_line,
)


DOMAIN = range(1, 6)


# Arithmetic Tests
def test_scenario_high_risk_line():
    """Test score(3, 2, 4, 1, 5) against the lowest possible line."""
    high = score(3, 2, 4, 1, 5)
    low = score(1, 1, 1, 1, 1)

    assert high.probability_index == 10
    assert high.risk_value == 50
    assert low.probability_index == 4
    assert low.risk_value == 4
    assert high.risk_tier.rank > low.risk_tier.rank


def test_ranges_over_full_domain():
    """Test that index and value stay within [4, 20] and [4, 100] for every input."""
    for a, b, c, d, severity in itertools.product(DOMAIN, repeat=5):
        result = score(a, b, c, d, severity)
        assert result.probability_index == a + b + c + d
        assert 4 <= result.probability_index <= 20
        assert result.risk_value == result.probability_index * severity
        assert 4 <= result.risk_value <= 100


def test_tier_monotonic_in_every_input():
    """Test that raising any single input never lowers the tier."""
    for values in itertools.product(DOMAIN, repeat=5):
        base = score(*values).risk_tier.rank
        for position in range(5):
            if values[position] == 5:
                continue
            bumped = list(values)
            bumped[position] += 1
            assert score(*bumped).risk_tier.rank >= base


# Threshold Tests
def test_default_tier_boundaries():
    """Test the inclusive upper bounds 5/10/15/20."""
    assert classify(4) == RiskTier.TRIVIAL
    assert classify(5) == RiskTier.TRIVIAL
    assert classify(6) == RiskTier.TOLERABLE
    assert classify(10) == RiskTier.TOLERABLE
    assert classify(11) == RiskTier.MODERATE
    assert classify(15) == RiskTier.MODERATE
    assert classify(16) == RiskTier.IMPORTANT
    assert classify(20) == RiskTier.IMPORTANT
    assert classify(21) == RiskTier.INTOLERABLE
    assert classify(100) == RiskTier.INTOLERABLE


def test_custom_thresholds():
    """Test that configured bounds replace the defaults."""
    thresholds = [10, 25, 50, 75]
    assert classify(10, thresholds) == RiskTier.TRIVIAL
    assert classify(26, thresholds) == RiskTier.MODERATE
    assert classify(51, thresholds) == RiskTier.IMPORTANT
    assert classify(76, thresholds) == RiskTier.INTOLERABLE
    assert score(3, 2, 4, 1, 5, thresholds).risk_tier == RiskTier.MODERATE


# Validation Tests
def test_out_of_range_factor_rejected():
    """Test that factors outside [1, 5] raise OutOfRange and are never clamped."""
    with pytest.raises(OutOfRange) as exc_info:
        score(0, 1, 1, 1, 1)
    assert exc_info.value.field == "probability_a"

    with pytest.raises(OutOfRange):
        score(1, 1, 1, 1, 6)


def test_out_of_range_is_validation_error():
    """Test that OutOfRange belongs to the ValidationError family."""
    with pytest.raises(ValidationError):
        score(1, 1, 1, 9, 1)


def test_non_integer_factors_rejected():
    """Test that bools, floats and strings are rejected."""
    with pytest.raises(OutOfRange):
        score(True, 1, 1, 1, 1)
    with pytest.raises(OutOfRange):
        score(1, 2.0, 1, 1, 1)
    with pytest.raises(OutOfRange):
        score(1, 1, "3", 1, 1)


def test_validate_line_reports_line_number():
    """Test that a stored line with a corrupt factor names its line number."""
    line = RiskLine(
        number=7,
        activity="Izaje",
        task="Montaje de vigas",
        hazard="Carga suspendida",
        risk="Golpe",
        probability_a=2,
        probability_b=2,
        probability_c=8,
        probability_d=2,
        severity=3,
    )

    with pytest.raises(OutOfRange) as exc_info:
        validate_line(line)
    assert "line 7" in str(exc_info.value)


def test_risk_line_derived_values_are_recomputed():
    """Test that editing an input immediately changes the derived values."""
    line = RiskLine(
        number=1,
        activity="Soldadura",
        task="Corte",
        hazard="Chispas",
        risk="Quemadura",
        probability_a=1,
        probability_b=1,
        probability_c=1,
        probability_d=1,
        severity=1,
    )
    assert line.score().risk_value == 4
    assert line.score().risk_tier == RiskTier.TRIVIAL

    line.severity = 5
    assert line.score().risk_value == 20
    assert line.score().risk_tier == RiskTier.IMPORTANT
    assert line.score([4, 8, 12, 16]).risk_tier == RiskTier.INTOLERABLE
    assert line.score([5, 10, 20, 40]).risk_tier == RiskTier.MODERATE
    assert "risk_value" not in line.model_dump()


# Matrix Tests
def test_matrix_corners():
    """Test the extreme cells of the qualitative matrix."""
    assert matrix_level(Likelihood.VERY_LOW, Consequence.INSIGNIFICANT) == RiskTier.TRIVIAL
    assert matrix_level(Likelihood.VERY_HIGH, Consequence.CATASTROPHIC) == RiskTier.INTOLERABLE
    assert matrix_level("Media", "Moderada") == RiskTier.MODERATE


def test_matrix_monotonic():
    """Test that the matrix never decreases along either axis."""
    likelihoods = list(Likelihood)
    consequences = list(Consequence)
    for i, likelihood in enumerate(likelihoods):
        for j, consequence in enumerate(consequences):
            rank = matrix_level(likelihood, consequence).rank
            if i + 1 < len(likelihoods):
                assert matrix_level(likelihoods[i + 1], consequence).rank >= rank
            if j + 1 < len(consequences):
                assert matrix_level(likelihood, consequences[j + 1]).rank >= rank


def test_tier_counts_includes_empty_tiers():
    """Test that every tier appears in the aggregate."""
    counts = tier_counts([score(1, 1, 1, 1, 1), score(1, 1, 1, 1, 1), score(5, 5, 5, 5, 5)])

    assert counts[RiskTier.TRIVIAL] == 2
    assert counts[RiskTier.INTOLERABLE] == 1
    assert counts[RiskTier.MODERATE] == 0
    assert len(counts) == 5
