"""Cars, locomotives and the train they form, as seen by the brake model.
"""
import logging
from typing import List, Mapping, Optional

from brakeModel.brake_controller import DriverBrakeController
from brakeModel.brake_systems import BrakeSystem, create_brake_system
from brakeModel.parameters import apply_parameters
from brakeModel.pressure_state import ValveState

logger = logging.getLogger(__name__)


class BrakeCar:
    """A car with its own brake system.

    Attributes:
        car_id: Identifier used in logs and status tables.
        brake_type: Brake type token the brake system was built from.
        length_m: Car length in meters.
        brake_system: The car's brake system (owns its pressures).
    """

    is_locomotive = False

    def __init__(self, car_id: str, brake_type: str = "air_single_pipe",
                 length_m: float = 15.0,
                 brake_system: Optional[BrakeSystem] = None) -> None:
        self.car_id = car_id
        self.brake_type = brake_type
        self.length_m = length_m
        self.brake_system = brake_system or create_brake_system(brake_type, length_m)

    @property
    def brake_force_n(self) -> float:
        return self.brake_system.brake_force_n

    def parse_parameters(self, params: Mapping[str, object]) -> int:
        return self.brake_system.parse_parameters(params)

    def __repr__(self):
        return "%s(%r, %s)" % (type(self).__name__, self.car_id, self.brake_system.TYPE_NAME)


class Locomotive(BrakeCar):
    """A powered car feeding the brake pipe from its main reservoir.

    Holds the driver's train brake and engine brake handles. Only the lead
    locomotive's handles act on the train.
    """

    is_locomotive = True

    PARAMETERS = {
        "airbrakesmainresvolume": ("main_reservoir_volume_ft3",),
        "mainreservoirvolumeft3": ("main_reservoir_volume_ft3",),
        "airbrakesmainmaxairpressure": ("main_reservoir_psi", "max_main_reservoir_psi"),
        "mainreservoirpsi": ("main_reservoir_psi", "max_main_reservoir_psi"),
        "ortsbrakepipechargingrate": ("brake_pipe_charging_rate_psips",),
        "brakepipechargingratepsips": ("brake_pipe_charging_rate_psips",),
        "ortsbrakepipetimefactor": ("brake_pipe_time_factor_s",),
        "brakepipetimefactors": ("brake_pipe_time_factor_s",),
        "ortsbrakeservicetimefactor": ("brake_service_time_factor_s",),
        "brakeservicetimefactors": ("brake_service_time_factor_s",),
        "ortsbrakeemergencytimefactor": ("brake_emergency_time_factor_s",),
        "brakeemergencytimefactors": ("brake_emergency_time_factor_s",),
        "enginebrakeapplyratepsips": ("engine_brake_apply_rate_psips",),
        "enginebrakereleaseratepsips": ("engine_brake_release_rate_psips",),
    }

    def __init__(self, car_id: str, brake_type: str = "air_single_pipe",
                 length_m: float = 20.0,
                 brake_system: Optional[BrakeSystem] = None,
                 train_brake_controller: Optional[DriverBrakeController] = None,
                 engine_brake_controller: Optional[DriverBrakeController] = None) -> None:
        super().__init__(car_id, brake_type, length_m, brake_system)
        self.main_reservoir_psi = 130.0
        self.max_main_reservoir_psi = 130.0
        self.main_reservoir_volume_ft3 = 10.0
        self.brake_pipe_charging_rate_psips = 21.0
        self.brake_pipe_time_factor_s = 0.003
        self.brake_service_time_factor_s = 1.009
        self.brake_emergency_time_factor_s = 0.1
        self.engine_brake_apply_rate_psips = 12.5
        self.engine_brake_release_rate_psips = 12.5
        self.train_brake_controller = train_brake_controller or DriverBrakeController.with_default_notches()
        self.engine_brake_controller = engine_brake_controller or DriverBrakeController.with_default_notches()
        self.bail_off = False
        self.engine_brake_state = ValveState.LAP

    def parse_parameters(self, params: Mapping[str, object]) -> int:
        """Apply locomotive and brake system parameters.

        Handle calibration goes through the controllers' own
        parse_parameters.

        Returns:
            Number of parameters applied.
        """
        applied = apply_parameters(self, params, self.PARAMETERS)
        return applied + self.brake_system.parse_parameters(params)


class Train:
    """Ordered cars plus the train level brake line targets.

    Attributes:
        cars: Cars front to back.
        lead_index: Index of the driven locomotive, None for no lead.
        brake_line_target: Requested brake pipe pressure in psi (vacuum
            trains: vacuum in inHg).
        line_aux2: Main reservoir pipe pressure in psi.
        engine_brake_target: Requested independent brake pressure in psi.
        ep_line: EP control line pressure in psi.
        ai_brake_percent: Brake percentage requested by the AI driver,
            None for driver controlled trains.
    """

    def __init__(self, cars: Optional[List[BrakeCar]] = None,
                 lead_index: Optional[int] = 0) -> None:
        self.cars: List[BrakeCar] = list(cars or [])
        self.lead_index = lead_index
        self.brake_line_target = 90.0
        self.line_aux2 = 0.0
        self.engine_brake_target = 0.0
        self.ep_line = 0.0
        self.ai_brake_percent: Optional[float] = None

    @property
    def lead_locomotive(self) -> Optional[Locomotive]:
        if self.lead_index is None or not 0 <= self.lead_index < len(self.cars):
            return None
        car = self.cars[self.lead_index]
        return car if car.is_locomotive else None

    @property
    def last_car(self) -> Optional[BrakeCar]:
        return self.cars[-1] if self.cars else None

    @property
    def is_vacuum(self) -> bool:
        return bool(self.cars) and self.cars[0].brake_system.is_vacuum

    def add_car(self, car: BrakeCar) -> None:
        self.cars.append(car)

    def remove_car(self, car: BrakeCar) -> None:
        index = self.cars.index(car)
        self.cars.remove(car)
        if self.lead_index is not None:
            if index == self.lead_index:
                self.lead_index = None
            elif index < self.lead_index:
                self.lead_index -= 1
        logger.info("Removed %r from train", car)

    def find_lead_locomotives(self) -> List[BrakeCar]:
        """Get the unbroken run of locomotives containing the lead.

        Returns:
            The lead group front to back, empty when there is no lead.
        """
        lead = self.lead_locomotive
        if lead is None:
            return []
        first = last = self.lead_index
        while first > 0 and self.cars[first - 1].is_locomotive:
            first -= 1
        while last < len(self.cars) - 1 and self.cars[last + 1].is_locomotive:
            last += 1
        return self.cars[first:last + 1]
