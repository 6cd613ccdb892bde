"""
mission.py

Incidents the player responds to. A mission moves from pending to dispatched
to completed, or to failed when its timer runs out; status never moves
backwards.

Classes:
    - MissionType: The five incident kinds.
    - MissionStatus: Mission lifecycle states.
    - MissionConfig: Static content per mission type.
    - Mission: A single incident.
    - InvalidTransition: Raised for a forbidden status change.
"""

from dataclasses import dataclass, field
from enum import Enum

from geometry import LatLng
from station import BuildingType


class InvalidTransition(Exception):
    """Raised when a state machine is asked to make a transition it does not allow."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self):
        return self.message


class MissionType(Enum):
    FIRE = "fire"
    TRAFFIC_ACCIDENT = "traffic-accident"
    MEDICAL_EMERGENCY = "medical-emergency"
    CRIME = "crime"
    INFRASTRUCTURE = "infrastructure"


class MissionStatus(Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MissionStatus.COMPLETED, MissionStatus.FAILED)


MISSION_TRANSITIONS = {
    MissionStatus.PENDING: {MissionStatus.DISPATCHED, MissionStatus.FAILED},
    MissionStatus.DISPATCHED: {MissionStatus.COMPLETED, MissionStatus.FAILED},
    MissionStatus.COMPLETED: set(),
    MissionStatus.FAILED: set(),
}


@dataclass(frozen=True)
class MissionConfig:
    titles: tuple[str, ...]
    descriptions: tuple[str, ...]
    base_reward: int
    base_penalty: int
    base_time_limit: float
    required_buildings: tuple[BuildingType, ...]
    work_duration: float


MISSION_CONFIGS = {
    MissionType.FIRE: MissionConfig(
        titles=("Building Fire", "House Fire", "Warehouse Fire", "Car Fire"),
        descriptions=(
            "A fire has broken out in the downtown area!",
            "Residential fire reported, residents in danger!",
            "Warehouse ablaze, chemicals on site!",
            "Vehicle fire on the highway!",
        ),
        base_reward=1500,
        base_penalty=800,
        base_time_limit=60,
        required_buildings=(BuildingType.FIRE_STATION,),
        work_duration=10,
    ),
    MissionType.TRAFFIC_ACCIDENT: MissionConfig(
        titles=("Traffic Collision", "Highway Pileup", "Pedestrian Accident", "Bus Accident"),
        descriptions=(
            "Multi-vehicle collision on Main Street!",
            "Major pileup on the highway!",
            "Pedestrian struck near the school zone!",
            "Bus accident downtown, multiple injuries!",
        ),
        base_reward=1200,
        base_penalty=600,
        base_time_limit=45,
        required_buildings=(BuildingType.AMBULANCE_STATION, BuildingType.POLICE_STATION),
        work_duration=6,
    ),
    MissionType.MEDICAL_EMERGENCY: MissionConfig(
        titles=("Heart Attack", "Stroke Alert", "Allergic Reaction", "Injury Report"),
        descriptions=(
            "Cardiac emergency at the office complex!",
            "Stroke suspected at residential address!",
            "Severe allergic reaction at the restaurant!",
            "Serious injury reported at construction site!",
        ),
        base_reward=1000,
        base_penalty=500,
        base_time_limit=30,
        required_buildings=(BuildingType.HOSPITAL, BuildingType.AMBULANCE_STATION),
        work_duration=5,
    ),
    MissionType.CRIME: MissionConfig(
        titles=("Robbery in Progress", "Assault Reported", "Break-in Alert", "Suspicious Activity"),
        descriptions=(
            "Armed robbery at the downtown bank!",
            "Assault reported near the park!",
            "Break-in at commercial property!",
            "Suspicious activity reported by residents!",
        ),
        base_reward=1300,
        base_penalty=700,
        base_time_limit=40,
        required_buildings=(BuildingType.POLICE_STATION,),
        work_duration=7,
    ),
    MissionType.INFRASTRUCTURE: MissionConfig(
        titles=("Road Collapse", "Water Main Break", "Power Line Down", "Sinkhole"),
        descriptions=(
            "Road has collapsed on 5th Avenue!",
            "Water main burst flooding the street!",
            "Power line down, area unsafe!",
            "Sinkhole forming near residential area!",
        ),
        base_reward=800,
        base_penalty=400,
        base_time_limit=90,
        required_buildings=(BuildingType.ROAD_AUTHORITY,),
        work_duration=12,
    ),
}


@dataclass
class Mission:
    """An incident needing a response.

    Times are in game minutes except `created_at` and `resolved_at`, which are
    game-clock readings in ms.

    Attributes:
        id (str): Mission id.
        type (MissionType): Incident kind.
        title (str): Short display title.
        description (str): Display text.
        position (LatLng): Incident location.
        reward (int): Money earned on completion.
        penalty (int): Money lost on failure.
        time_limit (float): Minutes allowed.
        time_remaining (float): Minutes left, never negative.
        required_buildings (tuple[BuildingType, ...]): Station types to send units from.
        work_duration (float): Minutes each vehicle works on site.
        created_at (float): Game time at spawn.
        status (MissionStatus): Lifecycle state.
        dispatched_vehicles (list[int]): Vehicles sent to the mission.
        resolved_at (float | None): Game time of completion or failure.
    """

    id: str
    type: MissionType
    title: str
    description: str
    position: LatLng
    reward: int
    penalty: int
    time_limit: float
    time_remaining: float
    required_buildings: tuple[BuildingType, ...]
    work_duration: float
    created_at: float
    status: MissionStatus = MissionStatus.PENDING
    dispatched_vehicles: list[int] = field(default_factory=list)
    resolved_at: float | None = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def transition(self, status: MissionStatus) -> None:
        if status not in MISSION_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Mission {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def count_down(self, minutes: float) -> float:
        self.time_remaining = max(0.0, self.time_remaining - minutes)
        return self.time_remaining

    def age_minutes(self, game_time: float) -> float:
        return (game_time - self.created_at) / 60_000
