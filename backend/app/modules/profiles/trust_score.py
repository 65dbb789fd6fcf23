# app/modules/profiles/trust_score.py
# Composite trust score for personal profiles.

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from app.db.schemas.common_schemas import utc_now
from app.db.schemas.profile_schemas import PersonalPayload, TrustFactor, TrustFactorType, TrustScore

BASE_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100

# Inclusive (min, max) contribution of each factor
FACTOR_BOUNDS: Dict[str, Tuple[int, int]] = {
    TrustFactorType.VERIFICATION.value: (0, 30),
    TrustFactorType.REFERENCES.value: (0, 15),
    TrustFactorType.RENTAL_HISTORY.value: (0, 15),
    TrustFactorType.PROFILE_COMPLETENESS.value: (0, 12),
    TrustFactorType.REVIEWS.value: (-20, 20),
    TrustFactorType.PAYMENT_HISTORY.value: (-20, 20),
    TrustFactorType.COMMUNICATION.value: (-10, 10),
}

DERIVED_FACTORS = (
    TrustFactorType.VERIFICATION.value,
    TrustFactorType.REFERENCES.value,
    TrustFactorType.RENTAL_HISTORY.value,
    TrustFactorType.PROFILE_COMPLETENESS.value,
)

VERIFICATION_WEIGHTS: Dict[str, int] = {
    "identity": 10,
    "income": 8,
    "background": 6,
    "rental_history": 4,
    "references": 4,
    "business_license": 5,
}

REFERENCE_POINTS = 3
VERIFIED_REFERENCE_BONUS = 2
COMPLETE_RENTAL_POINTS = 4
INCOMPLETE_RENTAL_POINTS = 1
VERIFIED_RENTAL_BONUS = 2
COMPLETENESS_POINTS = 2
COMPLETENESS_FIELDS = ("bio", "occupation", "employer", "annual_income", "employment_status", "move_in_date")


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def bound_factor(factor_type: str, value: int) -> int:
    low, high = FACTOR_BOUNDS[factor_type]
    return clamp(value, low, high)


def score_from_factors(factors: List[TrustFactor]) -> int:
    """Aggregate score: the base plus every factor contribution, clamped to [0, 100]."""
    return clamp(BASE_SCORE + sum(f.value for f in factors), MIN_SCORE, MAX_SCORE)


class TrustScoreEngine:
    """
    Derives trust factors from personal payload content.

    `verification`, `references`, `rental_history` and `profile_completeness` are
    recomputed from the payload each time. `reviews`, `payment_history` and
    `communication` come from other parts of the platform through
    `update_factor` and are carried over by `calculate` untouched.
    """

    def verification_points(self, payload: PersonalPayload) -> int:
        flags = payload.verification
        return sum(weight for name, weight in VERIFICATION_WEIGHTS.items() if getattr(flags, name))

    def reference_points(self, payload: PersonalPayload) -> int:
        return sum(REFERENCE_POINTS + (VERIFIED_REFERENCE_BONUS if ref.verified else 0) for ref in payload.references)

    def rental_history_points(self, payload: PersonalPayload) -> int:
        points = 0
        for entry in payload.rental_history:
            points += COMPLETE_RENTAL_POINTS if entry.is_complete else INCOMPLETE_RENTAL_POINTS
            if entry.verified:
                points += VERIFIED_RENTAL_BONUS
        return points

    def completeness_points(self, payload: PersonalPayload) -> int:
        info = payload.personal_info
        filled = [name for name in COMPLETENESS_FIELDS if getattr(info, name) not in (None, "")]
        return COMPLETENESS_POINTS * len(filled)

    def derived_factors(self, payload: PersonalPayload) -> List[TrustFactor]:
        raw = {
            TrustFactorType.VERIFICATION.value: self.verification_points(payload),
            TrustFactorType.REFERENCES.value: self.reference_points(payload),
            TrustFactorType.RENTAL_HISTORY.value: self.rental_history_points(payload),
            TrustFactorType.PROFILE_COMPLETENESS.value: self.completeness_points(payload),
        }
        factors = []
        for factor_type in DERIVED_FACTORS:
            value = bound_factor(factor_type, raw[factor_type])
            if value:
                factors.append(TrustFactor(type=factor_type, value=value))
        return factors

    def calculate(self, payload: PersonalPayload) -> TrustScore:
        """Full recomputation. Same payload in, same score and factors out."""
        external = [f for f in payload.trust_score.factors if f.type not in DERIVED_FACTORS]
        factors = self.derived_factors(payload) + external
        return TrustScore(score=score_from_factors(factors), factors=factors)

    def update_factor(
        self, trust_score: TrustScore, factor: str, value: int, now: Optional[datetime] = None
    ) -> TrustScore:
        """Replaces (or appends) one factor and re-derives the score from the whole list."""
        if factor not in FACTOR_BOUNDS:
            raise ValueError(f"Unknown trust factor '{factor}'")
        updated = TrustFactor(type=factor, value=bound_factor(factor, value), updated_at=now or utc_now())
        factors = [f for f in trust_score.factors if f.type != factor]
        position = next((i for i, f in enumerate(trust_score.factors) if f.type == factor), len(factors))
        factors.insert(position, updated)
        return TrustScore(score=score_from_factors(factors), factors=factors)
