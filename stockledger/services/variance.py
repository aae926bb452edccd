"""
Évaluation des écarts de comptage.

Fonctions pures, sans accès base. Un seuil à None n'est pas évalué; un
seuil n'est dépassé que si l'écart lui est strictement supérieur.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Thresholds:
    qty: int | None = None
    pct: Decimal | None = None
    value: Decimal | None = None


@dataclass(frozen=True)
class VarianceResult:
    variance: int
    variance_pct: Decimal
    variance_value: Decimal
    exceeds_threshold: bool

    @property
    def recount_required(self) -> bool:
        return self.exceeds_threshold


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def variance_pct(system_qty: int, counted_qty: int) -> Decimal:
    if system_qty > 0:
        return _money(Decimal(abs(counted_qty - system_qty)) * 100 / Decimal(system_qty))
    if counted_qty > 0:
        return _money(100)
    return _money(0)


def evaluate(
    system_qty: int,
    counted_qty: int,
    thresholds: Thresholds | None = None,
    *,
    unit_cost: Decimal | int = 0,
) -> VarianceResult:
    variance = counted_qty - system_qty
    pct = variance_pct(system_qty, counted_qty)
    value = _money(Decimal(variance) * Decimal(unit_cost))

    exceeds = False
    if thresholds is not None:
        if thresholds.qty is not None and abs(variance) > thresholds.qty:
            exceeds = True
        if thresholds.pct is not None and pct > Decimal(thresholds.pct):
            exceeds = True
        if thresholds.value is not None and abs(value) > Decimal(thresholds.value):
            exceeds = True

    return VarianceResult(
        variance=variance,
        variance_pct=pct,
        variance_value=value,
        exceeds_threshold=exceeds,
    )


# ---------- Tolerances ----------
@dataclass(frozen=True)
class ToleranceCheck:
    variance: int
    variance_pct: Decimal
    variance_value: Decimal
    matched_id: int | None = None
    matched_category: str | None = None
    matched_name: str | None = None
    within_tolerance: bool = False
    auto_approve: bool = False
    requires_recount: bool = False

    @property
    def recommendation(self) -> str:
        if self.auto_approve:
            return "AUTO_APPROVE"
        if self.requires_recount:
            return "RECOUNT"
        if self.within_tolerance:
            return "APPROVE"
        return "REVIEW"


def _within(amount, limit) -> bool:
    # 0 = pas de limite sur cet axe
    if not limit:
        return True
    return abs(Decimal(amount)) <= Decimal(limit)


def _applies(values, wanted) -> bool:
    return not values or wanted in values


def match_tolerance(
    rules,
    *,
    variance: int,
    variance_pct: Decimal | int = 0,
    variance_value: Decimal | int = 0,
    cycle_class: str | None = None,
    velocity_code: str | None = None,
) -> ToleranceCheck:
    """
    Confronte un écart aux règles de tolérance.

    Les règles sont prises par tolerance_qty croissante; la première dont
    cycle_classes et velocity_codes couvrent l'article décide (une liste
    vide couvre tout). Sans règle applicable, la recommandation est REVIEW.
    """
    pct = Decimal(variance_pct)
    value = Decimal(variance_value)

    for rule in sorted(rules, key=lambda r: (r.tolerance_qty, r.id or 0)):
        if not (_applies(rule.cycle_classes, cycle_class) and _applies(rule.velocity_codes, velocity_code)):
            continue

        within = (
            _within(variance, rule.tolerance_qty)
            and _within(pct, rule.tolerance_pct)
            and _within(value, rule.tolerance_value)
        )
        recount = bool(
            rule.require_recount
            and rule.recount_threshold
            and abs(variance) > rule.recount_threshold
        )
        return ToleranceCheck(
            variance=variance,
            variance_pct=pct,
            variance_value=value,
            matched_id=rule.id,
            matched_category=rule.category,
            matched_name=rule.name,
            within_tolerance=within,
            auto_approve=within and bool(rule.auto_approve),
            requires_recount=recount,
        )

    return ToleranceCheck(variance=variance, variance_pct=pct, variance_value=value)
