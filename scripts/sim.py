"""
sim.py

This script runs a headless emergency dispatch simulation using the DispatchModel
class. It places a starter set of stations, then advances the model with a fixed
real-time tick, dispatching idle units to every pending mission as it appears.
The collected finances, network congestion and mission outcomes are stored in a
timestamped directory.

Classes:
    - DataPath: Manages the directory and file paths for storing simulation data.
    - Sim: Handles the initialization, execution, and data collection of the simulation.

Functions:
    - parse_args: Parses command-line arguments to configure the simulation.

Usage:
    Run the script from the command line with optional arguments to customize the simulation.

    **Important**: Run from parent directory of the project.

    Pass `--routing-host` to fetch road geometry from an OSRM-compatible server;
    without it every route is planned offline on the road graph.
"""

import argparse
import datetime
import json
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

from tqdm import tqdm

sys.path.append(str(Path(__file__).resolve().parent.parent / "src"))

from dispatch_config import GameConfig, RouteServiceConfig, TrafficConfig
from dispatch_model import DispatchModel
from geometry import LatLng
from mission import MissionStatus
from route_service import RouteService
from station import BuildingType

STARTER_STATIONS = (
    (BuildingType.FIRE_STATION, LatLng(59.921, 10.754)),
    (BuildingType.POLICE_STATION, LatLng(59.929, 10.762)),
    (BuildingType.AMBULANCE_STATION, LatLng(59.924, 10.766)),
    (BuildingType.HOSPITAL, LatLng(59.918, 10.760)),
    (BuildingType.ROAD_AUTHORITY, LatLng(59.931, 10.750)),
)


def parse_args() -> dict:
    """Parses command line arguments for the dispatch simulation configuration.

    Returns:
        dict: A dictionary containing the parsed command line arguments.
    """
    parser = argparse.ArgumentParser(description="Dispatch Simulation Configuration")
    parser.add_argument("-s", "--steps", type=int, default=600, help="Number of ticks")
    parser.add_argument(
        "-t", "--tick_ms", type=float, default=100.0, help="Real milliseconds per tick"
    )
    parser.add_argument(
        "-g", "--game_speed", type=int, default=1, choices=(1, 2, 3), help="Game speed"
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument(
        "-c", "--num_traffic_cars", type=int, default=20, help="Number of ambient cars"
    )
    parser.add_argument(
        "--no_auto_spawn",
        action="store_true",
        help="Disable the mission spawn timer",
    )
    parser.add_argument(
        "--routing_host",
        type=str,
        default=None,
        help="Base URL of an OSRM-compatible routing server",
    )
    parser.add_argument(
        "--log_level",
        type=str,
        default="WARNING",
        help="One of: ['DEBUG', 'INFO', 'WARNING', 'ERROR']",
    )

    return vars(parser.parse_args())


@dataclass
class DataPath:
    """Manages the directory and file paths for storing simulation data.

    Creates a timestamped directory within the 'data' folder upon instantiation.

    Attributes:
        path (Path): The Path object representing the timestamped data directory.
    """

    path: Path = field(
        default_factory=lambda: Path.joinpath(
            Path.cwd(),
            "data",
            datetime.datetime.now().strftime("%Y-%m-%d-%H-%M-%S"),
        )
    )

    def __post_init__(self):
        self.path.mkdir(parents=True, exist_ok=True)

    def get_path(self) -> Path:
        return self.path

    def get_file_path(self, filename: str) -> Path:
        return Path.joinpath(self.path, filename)


class Sim:
    """Builds a model from the configuration, runs it and saves its records.

    Instantiating this class runs the entire simulation.

    Attributes:
        model (DispatchModel): The finished model.
        data_path (DataPath): Output directory.
    """

    def __init__(self, config: dict):
        route_service = None
        if config["routing_host"] is not None:
            route_service = RouteService(RouteServiceConfig(host=config["routing_host"]))

        self.model = DispatchModel(
            seed=config["seed"],
            game_config=GameConfig(auto_spawn=not config["no_auto_spawn"]),
            traffic_config=TrafficConfig(num_traffic_cars=config["num_traffic_cars"]),
            route_service=route_service,
        )
        self.model.set_game_speed(config["game_speed"])
        for building_type, position in STARTER_STATIONS:
            self.model.place_building(building_type, position)

        start_time = time.time()
        try:
            for _ in tqdm(range(config["steps"]), desc="Running simulation", unit="tick"):
                if not self.model.tick(config["tick_ms"]):
                    break
                self.dispatch_pending()
        finally:
            if route_service is not None:
                route_service.close()

        print(100 * "-")
        print("Sim completed!")
        print(
            f"Avg. time per tick: {round((time.time() - start_time) / max(1, self.model.steps), 4)} seconds"
        )
        print(
            f"Money: {self.model.money} | completed: {self.model.missions_completed}"
            f" | failed: {self.model.missions_failed}"
        )

        self.data_path = DataPath()
        self.model.finances.get_data().write_parquet(
            file=self.data_path.get_file_path("finances.parquet")
        )
        self.model.network_congestion.get_data().write_parquet(
            file=self.data_path.get_file_path("network_congestion.parquet")
        )
        self.model.mission_log.get_data().write_parquet(
            file=self.data_path.get_file_path("mission_log.parquet")
        )

    def dispatch_pending(self) -> None:
        for mission in list(self.model.missions.values()):
            if mission.status == MissionStatus.PENDING:
                self.model.dispatch_vehicle(mission.id)


if __name__ == "__main__":
    config = parse_args()
    logging.basicConfig(
        level=getattr(logging, config["log_level"].upper(), logging.WARNING),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    print("Starting simulation with config:")
    for key, value in config.items():
        print(f"{key}: {value}")
    print(100 * "-")

    sim = Sim(config)

    with open(file=sim.data_path.get_file_path("config.json"), mode="w") as file:
        json.dump(obj=config, fp=file, indent=4)

    print(f"Simulation data stored in: {sim.data_path.get_path()}")
