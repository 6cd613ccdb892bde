"""
sim_data.py

This module defines the abstract base class `SimData` for structuring data
collected during a `DispatchModel` run, and the concrete records the model
keeps. It uses the Polars library for efficient data handling.

Classes:
    - SimData: Abstract interface for simulation data containers.
    - Finances: Money and game time per step.
    - NetworkCongestion: Road network load per step.
    - MissionLog: One row per resolved mission.

Dependencies:
    - abc: Used to define the abstract base class and methods.
    - dataclasses: Used for the concrete data classes.
    - polars: Used for creating and manipulating DataFrames.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import polars as pl


@dataclass
class SimData(ABC):
    """Abstract base class for simulation data containers.

    Subclasses hold a Polars DataFrame, set up its schema in `__post_init__`
    and append rows through `update_data`.
    """

    @abstractmethod
    def __post_init__(self):
        """Initializes the internal data structure (e.g., DataFrame schema)."""
        pass

    @abstractmethod
    def update_data(self, *args, **kwargs) -> None:
        """Appends new information to the stored data."""
        pass

    @abstractmethod
    def get_data(self) -> pl.DataFrame:
        """Returns the collected simulation data.

        Returns:
            pl.DataFrame: A Polars DataFrame containing the data collected
                          by the instance.
        """
        pass


FINANCES_SCHEMA = {"Step": pl.Int32, "Game_Time": pl.Float64, "Money": pl.Int64}


@dataclass
class Finances(SimData):
    """Tracks the player's money over time.

    Attributes:
        data (pl.DataFrame): Columns 'Step' (Int32), 'Game_Time' (Float64, ms of
                             simulated time) and 'Money' (Int64).
    """

    data: pl.DataFrame = field(default_factory=pl.DataFrame)

    def __post_init__(self):
        self.data = pl.DataFrame(schema=FINANCES_SCHEMA, strict=False)

    def update_data(self, step: int, game_time: float, money: int) -> None:
        self.data = self.data.vstack(
            other=pl.DataFrame(
                data={"Step": [step], "Game_Time": [game_time], "Money": [money]},
                schema=FINANCES_SCHEMA,
                strict=False,
            ),
        )

    def get_data(self) -> pl.DataFrame:
        return self.data


CONGESTION_SCHEMA = {
    "Step": pl.Int32,
    "Mean_Density": pl.Float64,
    "Gridlocked_Segments": pl.Int32,
    "Traffic_Cars": pl.Int32,
}


@dataclass
class NetworkCongestion(SimData):
    """Tracks how loaded the road network is at every step.

    Attributes:
        data (pl.DataFrame): Columns 'Step' (Int32), 'Mean_Density' (Float64),
                             'Gridlocked_Segments' (Int32) and 'Traffic_Cars' (Int32).
    """

    data: pl.DataFrame = field(default_factory=pl.DataFrame)

    def __post_init__(self):
        self.data = pl.DataFrame(schema=CONGESTION_SCHEMA, strict=False)

    def update_data(
        self, step: int, mean_density: float, gridlocked: int, traffic_cars: int
    ) -> None:
        self.data = self.data.vstack(
            other=pl.DataFrame(
                data={
                    "Step": [step],
                    "Mean_Density": [mean_density],
                    "Gridlocked_Segments": [gridlocked],
                    "Traffic_Cars": [traffic_cars],
                },
                schema=CONGESTION_SCHEMA,
                strict=False,
            ),
        )

    def get_data(self) -> pl.DataFrame:
        return self.data


MISSION_LOG_SCHEMA = {
    "Mission_ID": pl.String,
    "Type": pl.String,
    "Status": pl.String,
    "Vehicles": pl.Int32,
    "Money_Delta": pl.Int64,
    "Created_At": pl.Float64,
    "Resolved_At": pl.Float64,
}


@dataclass
class MissionLog(SimData):
    """Records the outcome of every mission once it is completed or failed.

    Attributes:
        data (pl.DataFrame): One row per resolved mission with its id, type,
                             final status, number of vehicles sent, the money
                             gained (positive) or lost (negative), and the
                             game times of creation and resolution.
    """

    data: pl.DataFrame = field(default_factory=pl.DataFrame)

    def __post_init__(self):
        self.data = pl.DataFrame(schema=MISSION_LOG_SCHEMA, strict=False)

    def update_data(self, mission) -> None:
        """Appends the outcome of a resolved `Mission`."""
        completed = mission.status.value == "completed"
        self.data = self.data.vstack(
            other=pl.DataFrame(
                data={
                    "Mission_ID": [mission.id],
                    "Type": [mission.type.value],
                    "Status": [mission.status.value],
                    "Vehicles": [len(mission.dispatched_vehicles)],
                    "Money_Delta": [mission.reward if completed else -mission.penalty],
                    "Created_At": [mission.created_at],
                    "Resolved_At": [mission.resolved_at],
                },
                schema=MISSION_LOG_SCHEMA,
                strict=False,
            ),
        )

    def get_data(self) -> pl.DataFrame:
        return self.data
