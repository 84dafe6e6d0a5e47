import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from brakeModel.brake_systems import AirSinglePipe, VacuumSinglePipe
from brakeModel.train import BrakeCar, Locomotive, Train


@pytest.fixture
def mixed_train():
    """Wagon, two locomotives, wagon, locomotive."""
    return Train([
        BrakeCar("W0"),
        Locomotive("L1"),
        Locomotive("L2"),
        BrakeCar("W3"),
        Locomotive("L4"),
    ], lead_index=1)


def test_car_builds_brake_system_from_type():
    assert isinstance(BrakeCar("W").brake_system, AirSinglePipe)
    assert isinstance(BrakeCar("V", "vacuum_single_pipe").brake_system, VacuumSinglePipe)


def test_brake_force_comes_from_brake_system():
    car = BrakeCar("W")
    car.brake_system.brake_force_n = 1234.0
    assert car.brake_force_n == 1234.0


@pytest.mark.parametrize("lead_index, expected", [
    (1, ["L1", "L2"]),
    (2, ["L1", "L2"]),
    (4, ["L4"]),
    (0, []),
    (None, []),
    (9, []),
])
def test_find_lead_locomotives(mixed_train, lead_index, expected):
    mixed_train.lead_index = lead_index
    assert [c.car_id for c in mixed_train.find_lead_locomotives()] == expected


def test_lead_locomotive_requires_a_locomotive(mixed_train):
    assert mixed_train.lead_locomotive.car_id == "L1"
    mixed_train.lead_index = 0
    assert mixed_train.lead_locomotive is None


def test_remove_car_keeps_lead(mixed_train):
    mixed_train.remove_car(mixed_train.cars[0])
    assert mixed_train.lead_locomotive.car_id == "L1"
    mixed_train.remove_car(mixed_train.lead_locomotive)
    assert mixed_train.lead_index is None
    assert mixed_train.last_car.car_id == "L4"


def test_vacuum_train_detection():
    assert not Train([BrakeCar("W")]).is_vacuum
    assert Train([BrakeCar("V", "vacuum_single_pipe")]).is_vacuum
    assert not Train([]).is_vacuum


def test_locomotive_parse_parameters():
    loco = Locomotive("L")
    applied = loco.parse_parameters({
        "mainReservoirVolumeFT3": 20,
        "engine(ortsbrakepipetimefactor": 0.01,
        "maxBrakeForceN": 1000,
        "nonsense": 1,
    })
    assert applied == 3
    assert loco.main_reservoir_volume_ft3 == 20.0
    assert loco.brake_pipe_time_factor_s == 0.01
    assert loco.brake_system.max_brake_force_n == 1000.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
