"""
station.py

Stations (buildings) that house dispatch vehicles, and the static table of
what each building type costs and which vehicles it ships with.

Classes:
    - BuildingType: The seven building kinds.
    - BuildingSize: Small or large.
    - BuildingConfig: Static content for one building type.
    - RosterEntry: Read-only view of one vehicle in a station's roster.
    - Building: A placed building.
"""

import math
from dataclasses import dataclass, field
from enum import Enum

from geometry import LatLng


class BuildingType(Enum):
    FIRE_STATION = "fire-station"
    POLICE_STATION = "police-station"
    HOSPITAL = "hospital"
    AMBULANCE_STATION = "ambulance-station"
    MEDICAL_CLINIC = "medical-clinic"
    ROAD_AUTHORITY = "road-authority"
    MORGUE = "morgue"


class BuildingSize(Enum):
    SMALL = "small"
    LARGE = "large"


@dataclass(frozen=True)
class BuildingConfig:
    name: str
    small_cost: int
    large_cost: int
    upgrade_cost: int
    vehicle_type: str
    vehicle_count: int
    staff_cost: int = 500
    vehicle_cost: int = 1500
    max_level: int = 3

    def cost_for(self, size: BuildingSize) -> int:
        return self.small_cost if size == BuildingSize.SMALL else self.large_cost

    def vehicles_for(self, size: BuildingSize) -> int:
        if size == BuildingSize.SMALL:
            return math.ceil(self.vehicle_count / 2)
        return self.vehicle_count


BUILDING_CONFIGS = {
    BuildingType.FIRE_STATION: BuildingConfig(
        "Fire Station", 3000, 6000, 4000, "Fire Truck", 2
    ),
    BuildingType.POLICE_STATION: BuildingConfig(
        "Police Station", 2500, 5000, 3500, "Patrol Car", 3
    ),
    BuildingType.HOSPITAL: BuildingConfig(
        "Hospital", 5000, 10000, 6000, "Ambulance", 2, staff_cost=800
    ),
    BuildingType.AMBULANCE_STATION: BuildingConfig(
        "Ambulance Station", 2000, 4000, 2500, "Ambulance", 3
    ),
    BuildingType.MEDICAL_CLINIC: BuildingConfig(
        "Medical Clinic", 1500, 3000, 2000, "Medical Van", 1, vehicle_cost=1000
    ),
    BuildingType.ROAD_AUTHORITY: BuildingConfig(
        "Road Authority", 2000, 4000, 2500, "Utility Truck", 2
    ),
    BuildingType.MORGUE: BuildingConfig(
        "Morgue", 1500, 3000, 2000, "Transport Van", 1, vehicle_cost=1000
    ),
}


@dataclass(frozen=True)
class RosterEntry:
    vehicle_id: int
    vehicle_type: str
    status: str
    mission_id: str | None


@dataclass
class Building:
    """A placed station.

    Attributes:
        id (str): Building id.
        type (BuildingType): Building kind.
        size (BuildingSize): Current size; upgrading always makes it large.
        name (str): Display name, numbered per type.
        position (LatLng): Where vehicles park and return to.
        cost (int): Price paid at placement, basis of the sell refund.
        level (int): Upgrade level starting at 1.
        staff (int): Employed staff.
        max_staff (int): Staff limit.
        efficiency (float): Operating efficiency in [0, 1].
        vehicle_ids (list[int]): Vehicles owned by the building.
        roster (tuple[RosterEntry, ...]): Last synchronised view of those vehicles.
    """

    id: str
    type: BuildingType
    size: BuildingSize
    name: str
    position: LatLng
    cost: int
    level: int = 1
    staff: int = 0
    max_staff: int = 0
    efficiency: float = 0.0
    vehicle_ids: list[int] = field(default_factory=list)
    roster: tuple[RosterEntry, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.max_staff:
            small = self.size == BuildingSize.SMALL
            self.staff = 5 if small else 12
            self.max_staff = 8 if small else 20
            self.efficiency = 0.7 if small else 1.0

    @property
    def config(self) -> BuildingConfig:
        return BUILDING_CONFIGS[self.type]

    def apply_upgrade(self) -> None:
        self.level += 1
        self.size = BuildingSize.LARGE
        self.max_staff += 5
        self.staff = min(self.staff + 2, self.max_staff)
        self.efficiency = min(1.0, self.efficiency + 0.15)

    def hire(self) -> bool:
        if self.staff >= self.max_staff:
            return False
        self.staff += 1
        self.efficiency = min(1.0, self.efficiency + 0.05)
        return True
