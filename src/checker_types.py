"""
checker_types.py

Types defined for use by checker functions.
"""

from typing import List, Optional, Tuple

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Location:
    longitude: float
    latitude: float


@dataclass(frozen=True)
class Appointment:
    time: Optional[str]
    type: Optional[str]


@dataclass(frozen=True)
class Site:
    # None when the feature has no usable id, such sites are always
    # treated as new
    id: Optional[int]
    # None when the feature has no point geometry
    location: Optional[Location]
    appointments_available: bool = False
    second_dose_only: bool = False
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    appointments: Tuple[Appointment, ...] = ()


@dataclass(frozen=True)
class FilterResult:
    found: Tuple[Site, ...]
    # Sites passing the availability filters, regardless of distance
    available: int
    total: int


@dataclass
class CheckResult:
    filtered: FilterResult
    new_sites: List[Site] = field(default_factory=list)
    notified: bool = False
