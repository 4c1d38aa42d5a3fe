"""Criteria evaluator for scoring listings against requirement profiles.

This module implements the per-criterion rules that:
1. Skip every criterion the profile did not specify
2. Grade each specified criterion as match, partial or miss
3. Attach a human-readable justification to every verdict

Range tolerances are computed with Decimal arithmetic so that a value lying
exactly on the edge of a tolerance band is always graded the same way.
"""

import logging
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from property_matcher.config.models import CriteriaWeights, ScoringConfig
from property_matcher.domain.models import Listing, ListingIntent, RequirementProfile
from property_matcher.utils.text import format_amount, normalize_place

from .exceptions import InvalidMatchInputError
from .models import CriterionVerdict, Evaluation, VerdictStatus
from .regions import RegionDirectory

logger = logging.getLogger(__name__)

CRITERIA_ORDER = (
    "budget",
    "location",
    "property_type",
    "bedrooms",
    "listing_intent",
    "area",
    "bathrooms",
)

_ZERO = Decimal(0)
_ONE = Decimal(1)


def _dec(value) -> Decimal:
    """Exact Decimal for an int or float as written (0.15 -> Decimal('0.15'))."""
    return Decimal(str(value))


def _describe_range(low: Optional[float], high: Optional[float], fmt: Callable = format_amount) -> str:
    if low is not None and high is not None:
        return f"{fmt(low)} - {fmt(high)}"
    if high is not None:
        return f"up to {fmt(high)}"
    return f"from {fmt(low)}"


class CriteriaEvaluator:
    """Evaluates a listing against a requirement profile, criterion by criterion.

    The evaluator holds no global state: the weight table, tolerance set and
    region directory are all supplied by the caller, so different trigger
    contexts can score with different tables.
    """

    def __init__(
        self,
        weights: Optional[CriteriaWeights] = None,
        tolerances: Optional[ScoringConfig] = None,
        regions: Optional[RegionDirectory] = None,
    ):
        """Initialize CriteriaEvaluator.

        Args:
            weights: Weight table (defaults to CriteriaWeights())
            tolerances: Tolerance band and partial-credit ratios
            regions: Region directory for partial location credit
        """
        self.weights = weights or CriteriaWeights()
        self.tolerances = tolerances or ScoringConfig()
        self.regions = regions or RegionDirectory()

        self._weight = {key: _dec(value) for key, value in self.weights.as_dict().items()}
        self._tolerance = _dec(self.tolerances.tolerance)

    def evaluate(self, profile: RequirementProfile, listing: Listing) -> Evaluation:
        """Evaluate every specified criterion of ``profile`` against ``listing``.

        Args:
            profile: Buyer requirement profile
            listing: Candidate listing

        Returns:
            Evaluation with one verdict per specified criterion, in a fixed order

        Raises:
            InvalidMatchInputError: If either input is missing or has a blank id
        """
        self._validate_inputs(profile, listing)

        verdicts: List[CriterionVerdict] = []
        for criterion in CRITERIA_ORDER:
            verdict = getattr(self, f"_evaluate_{criterion}")(profile, listing)
            if verdict is not None:
                verdicts.append(verdict)

        evaluation = Evaluation(profile_id=profile.id, listing_id=listing.id, verdicts=verdicts)

        logger.debug(
            f"Evaluated listing {listing.id} for profile {profile.id}",
            extra={
                "event": "matching.evaluated",
                "profile_id": profile.id,
                "listing_id": listing.id,
                "criteria_evaluated": len(verdicts),
            },
        )
        return evaluation

    @staticmethod
    def _validate_inputs(profile: Optional[RequirementProfile], listing: Optional[Listing]) -> None:
        if profile is None:
            raise InvalidMatchInputError("Profile is required")
        if listing is None:
            raise InvalidMatchInputError("Listing is required")
        if not getattr(profile, "id", None) or not str(profile.id).strip():
            raise InvalidMatchInputError("Profile id is missing or blank")
        if not getattr(listing, "id", None) or not str(listing.id).strip():
            raise InvalidMatchInputError("Listing id is missing or blank")

    def _verdict(
        self, key: str, status: VerdictStatus, detail: str, ratio: Decimal = _ZERO
    ) -> CriterionVerdict:
        weight = self._weight[key]
        if status == VerdictStatus.MATCH:
            contribution = weight
        elif status == VerdictStatus.PARTIAL:
            contribution = weight * ratio
        else:
            contribution = _ZERO
        return CriterionVerdict(
            criterion_key=key,
            weight=weight,
            status=status,
            contribution=contribution,
            detail=detail,
        )

    def _grade_range(
        self, value: float, low: Optional[float], high: Optional[float]
    ) -> Tuple[VerdictStatus, Optional[str], Decimal]:
        """Grade a value against an inclusive range with a relative tolerance band.

        Returns:
            (status, violated side "above"/"below" or None, deviation ratio)
        """
        v = _dec(value)
        if high is not None and v > _dec(high):
            bound = _dec(high)
            ceiling = bound * (_ONE + self._tolerance)
            deviation = (v - bound) / bound if bound else Decimal("Infinity")
            status = VerdictStatus.PARTIAL if v <= ceiling else VerdictStatus.MISS
            return status, "above", deviation
        if low is not None and v < _dec(low):
            bound = _dec(low)
            floor = bound * (_ONE - self._tolerance)
            deviation = (bound - v) / bound
            status = VerdictStatus.PARTIAL if v >= floor else VerdictStatus.MISS
            return status, "below", deviation
        return VerdictStatus.MATCH, None, _ZERO

    def _evaluate_budget(self, profile: RequirementProfile, listing: Listing) -> Optional[CriterionVerdict]:
        low, high = profile.budget_min, profile.budget_max
        if low is None and high is None:
            return None
        if listing.price is None:
            return self._verdict("budget", VerdictStatus.MISS, "Price not listed")

        price = format_amount(listing.price)
        status, side, deviation = self._grade_range(listing.price, low, high)
        if status == VerdictStatus.MATCH:
            detail = f"Price {price} within budget ({_describe_range(low, high)})"
        else:
            bound = high if side == "above" else low
            detail = (
                f"Price {price} is {deviation * 100:.1f}% {side} budget "
                f"{'max' if side == 'above' else 'min'} {format_amount(bound)}"
            )
        return self._verdict(
            "budget", status, detail, _dec(self.tolerances.budget_partial_ratio)
        )

    def _evaluate_location(self, profile: RequirementProfile, listing: Listing) -> Optional[CriterionVerdict]:
        wanted = [(loc, normalize_place(loc)) for loc in profile.locations]
        wanted = [(loc, key) for loc, key in wanted if key]
        if not wanted:
            return None

        fields = [
            (name, normalize_place(getattr(listing, name)))
            for name in ("city", "address", "state")
        ]
        fields = [(name, text) for name, text in fields if text]
        if not fields:
            return self._verdict("location", VerdictStatus.MISS, "Location not listed")

        for location, key in wanted:
            for field_name, text in fields:
                if key in text or text in key:
                    return self._verdict(
                        "location",
                        VerdictStatus.MATCH,
                        f"Location matches '{location}' ({field_name})",
                    )

        listing_region = self.regions.region_for_listing(listing)
        if listing_region:
            for location, _ in wanted:
                profile_region = self.regions.region_of(location)
                if self.regions.same_region(profile_region, listing_region):
                    return self._verdict(
                        "location",
                        VerdictStatus.PARTIAL,
                        f"Same region as '{location}' ({profile_region})",
                        _dec(self.tolerances.location_partial_ratio),
                    )

        where = listing.city or listing.state or listing.address
        wanted_names = ", ".join(loc for loc, _ in wanted)
        return self._verdict(
            "location", VerdictStatus.MISS, f"Location '{where}' not in {wanted_names}"
        )

    def _evaluate_property_type(self, profile: RequirementProfile, listing: Listing) -> Optional[CriterionVerdict]:
        if not profile.property_types:
            return None
        if not listing.property_type:
            return self._verdict("property_type", VerdictStatus.MISS, "Property type not listed")
        if listing.property_type in profile.property_types:
            return self._verdict(
                "property_type", VerdictStatus.MATCH, f"Type {listing.property_type} is wanted"
            )
        wanted = ", ".join(sorted(profile.property_types))
        return self._verdict(
            "property_type",
            VerdictStatus.MISS,
            f"Type {listing.property_type} not in {wanted}",
        )

    def _evaluate_bedrooms(self, profile: RequirementProfile, listing: Listing) -> Optional[CriterionVerdict]:
        low, high = profile.bedrooms_min, profile.bedrooms_max
        if low is None and high is None:
            return None
        if listing.bedrooms is None:
            return self._verdict("bedrooms", VerdictStatus.MISS, "Bedrooms not listed")

        count = listing.bedrooms
        wanted = _describe_range(low, high, fmt=str)
        slack = self.tolerances.bedrooms_slack

        if low is not None and count < low:
            status = VerdictStatus.PARTIAL if low - count <= slack else VerdictStatus.MISS
            detail = f"{count} bedrooms, {low - count} below wanted {wanted}"
        elif high is not None and count > high:
            status = VerdictStatus.PARTIAL if count - high <= slack else VerdictStatus.MISS
            detail = f"{count} bedrooms, {count - high} above wanted {wanted}"
        else:
            status = VerdictStatus.MATCH
            detail = f"{count} bedrooms within wanted {wanted}"

        return self._verdict(
            "bedrooms", status, detail, _dec(self.tolerances.bedrooms_partial_ratio)
        )

    def _evaluate_listing_intent(self, profile: RequirementProfile, listing: Listing) -> Optional[CriterionVerdict]:
        wanted = ListingIntent(profile.listing_intent)
        if wanted == ListingIntent.BOTH:
            return None
        actual = ListingIntent(listing.listing_intent)
        if actual == wanted:
            return self._verdict(
                "listing_intent", VerdictStatus.MATCH, f"Listed for {actual.value} as wanted"
            )
        return self._verdict(
            "listing_intent",
            VerdictStatus.MISS,
            f"Listed for {actual.value}, buyer wants {wanted.value}",
        )

    def _evaluate_area(self, profile: RequirementProfile, listing: Listing) -> Optional[CriterionVerdict]:
        low, high = profile.area_min, profile.area_max
        if low is None and high is None:
            return None
        if listing.usable_area is None:
            return self._verdict("area", VerdictStatus.MISS, "Usable area not listed")

        area = format_amount(listing.usable_area)
        status, side, deviation = self._grade_range(listing.usable_area, low, high)
        if status == VerdictStatus.MATCH:
            detail = f"Area {area} m2 within wanted {_describe_range(low, high)} m2"
        else:
            bound = high if side == "above" else low
            detail = f"Area {area} m2 is {deviation * 100:.1f}% {side} {format_amount(bound)} m2"
        return self._verdict("area", status, detail, _dec(self.tolerances.area_partial_ratio))

    def _evaluate_bathrooms(self, profile: RequirementProfile, listing: Listing) -> Optional[CriterionVerdict]:
        if profile.bathrooms_min is None:
            return None
        if listing.bathrooms is None:
            return self._verdict("bathrooms", VerdictStatus.MISS, "Bathrooms not listed")
        if listing.bathrooms >= profile.bathrooms_min:
            return self._verdict(
                "bathrooms",
                VerdictStatus.MATCH,
                f"{listing.bathrooms} bathrooms (at least {profile.bathrooms_min})",
            )
        return self._verdict(
            "bathrooms",
            VerdictStatus.MISS,
            f"{listing.bathrooms} bathrooms, wanted at least {profile.bathrooms_min}",
        )
