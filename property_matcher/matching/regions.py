"""Administrative region lookup used for partial location credit."""

from typing import Dict, Iterable, Mapping, Optional

from property_matcher.domain.models import Listing
from property_matcher.utils.text import normalize_place


class RegionDirectory:
    """Maps regions to their localities and answers "which region is this place in".

    Names are compared after ``normalize_place`` so "Setúbal" and "setubal"
    resolve to the same region. When a locality is listed under more than
    one region, the first region listed wins.

    Example:
        >>> regions = RegionDirectory({"Lisboa": ["Lisboa", "Cascais", "Sintra"]})
        >>> regions.region_of("cascais")
        'Lisboa'
    """

    def __init__(self, regions: Optional[Mapping[str, Iterable[str]]] = None):
        self._regions: Dict[str, str] = {}
        self._localities: Dict[str, str] = {}

        for region, localities in (regions or {}).items():
            key = normalize_place(region)
            if not key:
                continue
            self._regions.setdefault(key, region)
            for locality in localities or []:
                locality_key = normalize_place(locality)
                if locality_key:
                    self._localities.setdefault(locality_key, self._regions[key])

    def __len__(self) -> int:
        return len(self._regions)

    def __bool__(self) -> bool:
        return bool(self._regions)

    def region_of(self, place: Optional[str]) -> Optional[str]:
        """Return the region a place names or belongs to, or None if unknown."""
        key = normalize_place(place)
        if not key:
            return None
        if key in self._regions:
            return self._regions[key]
        return self._localities.get(key)

    def region_for_listing(self, listing: Listing) -> Optional[str]:
        """Region of a listing: its state, or the region its city belongs to.

        A state that is not a configured region is still returned as-is so it
        can equal a profile location that names the same region.
        """
        if listing.state and listing.state.strip():
            return self.region_of(listing.state) or listing.state.strip()
        return self.region_of(listing.city)

    def same_region(self, first: Optional[str], second: Optional[str]) -> bool:
        if not first or not second:
            return False
        return normalize_place(first) == normalize_place(second)
