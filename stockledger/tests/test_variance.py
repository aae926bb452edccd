from decimal import Decimal
from types import SimpleNamespace

from stockledger.services.variance import Thresholds, evaluate, match_tolerance, variance_pct


def test_exact_count_has_no_variance():
    result = evaluate(100, 100)

    assert result.variance == 0
    assert result.variance_pct == Decimal("0")
    assert result.exceeds_threshold is False


def test_small_shortage_stays_within_thresholds():
    """
    GIVEN
    - système 100, compté 97
    - seuils qty=5, pct=5

    THEN
    - écart -3, 3%, pas de recomptage
    """
    result = evaluate(100, 97, Thresholds(qty=5, pct=Decimal("5")))

    assert result.variance == -3
    assert result.variance_pct == Decimal("3.00")
    assert result.exceeds_threshold is False
    assert result.recount_required is False


def test_large_shortage_exceeds_thresholds():
    result = evaluate(100, 80, Thresholds(qty=5, pct=Decimal("5")))

    assert result.variance == -20
    assert result.variance_pct == Decimal("20.00")
    assert result.exceeds_threshold is True


def test_threshold_is_exceeded_only_when_strictly_greater():
    # |variance| == seuil qty reste dedans
    assert evaluate(100, 95, Thresholds(qty=5)).exceeds_threshold is False
    assert evaluate(100, 94, Thresholds(qty=5)).exceeds_threshold is True


def test_value_threshold_uses_unit_cost():
    thresholds = Thresholds(value=Decimal("100.00"))

    inside = evaluate(10, 8, thresholds, unit_cost=Decimal("50.00"))
    outside = evaluate(10, 7, thresholds, unit_cost=Decimal("50.00"))

    assert inside.variance_value == Decimal("-100.00")
    assert inside.exceeds_threshold is False
    assert outside.variance_value == Decimal("-150.00")
    assert outside.exceeds_threshold is True


def test_no_thresholds_never_exceed():
    assert evaluate(10, 0).exceeds_threshold is False
    assert evaluate(10, 0, Thresholds()).exceeds_threshold is False


def test_percentage_of_zero_system_quantity():
    assert variance_pct(0, 0) == Decimal("0")
    assert variance_pct(0, 7) == Decimal("100")


def test_percentage_is_rounded_half_up_to_cents():
    # 1/3 de 100 -> 33.333... ; 2/3 -> 66.666...
    assert variance_pct(3, 2) == Decimal("33.33")
    assert variance_pct(3, 1) == Decimal("66.67")


# ---------- tolerances ----------
def _rule(id, tolerance_qty=0, *, pct="0", value="0", classes=(), velocity=(), auto_approve=False,
          require_recount=False, recount_threshold=None, category="STD"):
    return SimpleNamespace(
        id=id,
        category=category,
        name=f"Tolerance {category}",
        tolerance_qty=tolerance_qty,
        tolerance_pct=Decimal(pct),
        tolerance_value=Decimal(value),
        cycle_classes=list(classes),
        velocity_codes=list(velocity),
        auto_approve=auto_approve,
        require_recount=require_recount,
        recount_threshold=recount_threshold,
    )


def test_tolerance_without_rules_recommends_review():
    check = match_tolerance([], variance=-3)

    assert check.matched_id is None
    assert check.within_tolerance is False
    assert check.recommendation == "REVIEW"


def test_tightest_applicable_rule_wins():
    """
    GIVEN
    - une règle large (10) pour tout, une règle serrée (2) réservée à la classe A

    THEN
    - un article de classe B tombe sur la règle large
    - un article de classe A tombe sur la règle serrée
    """
    rules = [_rule(1, 10, category="WIDE"), _rule(2, 2, classes=["A"], category="TIGHT")]

    wide = match_tolerance(rules, variance=-4, cycle_class="B")
    tight = match_tolerance(rules, variance=-4, cycle_class="A")

    assert (wide.matched_category, wide.within_tolerance) == ("WIDE", True)
    assert (tight.matched_category, tight.within_tolerance) == ("TIGHT", False)


def test_zero_limit_does_not_constrain_that_axis():
    rules = [_rule(1, 5, pct="0", value="20.00")]

    inside = match_tolerance(rules, variance=5, variance_pct=Decimal("80"), variance_value=Decimal("-20"))
    outside = match_tolerance(rules, variance=5, variance_value=Decimal("-20.01"))

    assert inside.within_tolerance is True
    assert outside.within_tolerance is False


def test_auto_approve_only_within_tolerance():
    rules = [_rule(1, 3, auto_approve=True)]

    assert match_tolerance(rules, variance=2).recommendation == "AUTO_APPROVE"
    assert match_tolerance(rules, variance=4).recommendation == "REVIEW"


def test_recount_threshold_recommends_recount():
    rules = [_rule(1, 3, require_recount=True, recount_threshold=5, velocity=["A"])]

    recount = match_tolerance(rules, variance=-6, velocity_code="A")
    approve = match_tolerance(rules, variance=-2, velocity_code="A")
    unmatched = match_tolerance(rules, variance=-6, velocity_code="C")

    assert (recount.requires_recount, recount.recommendation) == (True, "RECOUNT")
    assert approve.recommendation == "APPROVE"
    assert unmatched.recommendation == "REVIEW"
