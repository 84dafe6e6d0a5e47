import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from brakeModel.brake_systems import (
    ONE_ATMOSPHERE_PSI,
    AirSinglePipe,
    AirTwinPipe,
    ElectroPneumatic,
    VacuumSinglePipe,
    create_brake_system,
)
from brakeModel.pressure_state import BrakeEvent, RetainerSetting, ValveState
from universal.universal import ConversionFunctions


@pytest.fixture
def charged_car():
    """Single pipe car with a fully charged brake pipe and released brakes."""
    car = AirSinglePipe()
    car.initialize(False, 90.0, 50.0, False, 90.0)
    return car


@pytest.fixture
def applied_car():
    """Single pipe car initialised with a 20 psi reduction (cylinder at 50)."""
    car = AirSinglePipe()
    car.initialize(False, 90.0, 50.0, False, 70.0)
    return car


@pytest.fixture
def vacuum_car():
    car = VacuumSinglePipe()
    car.initialize(False, 21.0, 0.0, False, 21.0)
    return car


def _pressures(state):
    return [
        state.line_main,
        state.line_aux2,
        state.line_aux3,
        state.cylinder,
        state.auto_cylinder,
        state.aux_reservoir,
        state.emergency_reservoir,
    ]


# ---- factory ----
@pytest.mark.parametrize("name, expected", [
    ("vacuum_single_pipe", VacuumSinglePipe),
    ("Vacuum", VacuumSinglePipe),
    ("ep", ElectroPneumatic),
    ("air_twin_pipe", AirTwinPipe),
    ("air_single_pipe", AirSinglePipe),
    ("steam", AirSinglePipe),
    (None, AirSinglePipe),
])
def test_factory_picks_variant(name, expected):
    assert type(create_brake_system(name)) is expected


def test_brake_pipe_volume_scales_with_length():
    system = create_brake_system("air_single_pipe", 10.0)
    assert system.brake_pipe_volume_ft3 == pytest.approx(0.028 * 11)


# ---- air single pipe ----
def test_initialize_sets_cylinder_from_reduction(applied_car):
    s = applied_car.state
    assert s.aux_reservoir == 70.0
    assert s.emergency_reservoir == 90.0
    assert s.cylinder == pytest.approx(50.0)
    assert applied_car.brake_force_n == pytest.approx(89e3 * 50.0 / 64.0)


def test_initialize_immediate_release_empties_cylinder():
    car = AirSinglePipe()
    car.initialize(True, 90.0, 50.0, True, 70.0)
    assert car.state.cylinder == 0.0
    assert car.state.handbrake_percent == 100.0
    assert car.handbrake_on


def test_update_zero_leaves_pressures_unchanged(applied_car):
    applied_car.state.line_main = 60.0
    applied_car.update(0.5)
    before = applied_car.snapshot()
    applied_car.update(0.0)
    applied_car.update(-1.0)
    assert applied_car.snapshot() == before


def test_service_application_laps_at_brake_pipe_pressure(charged_car):
    charged_car.state.line_main = 85.0
    charged_car.update(1.0)
    assert charged_car.state.valve_state == ValveState.APPLY
    assert charged_car.state.aux_reservoir == pytest.approx(90.0 - 0.9 / 2.5)
    assert charged_car.state.cylinder == pytest.approx(0.9)

    for _ in range(100):
        charged_car.update(0.5)
    assert charged_car.state.valve_state == ValveState.LAP
    assert charged_car.state.aux_reservoir == pytest.approx(85.0)
    assert charged_car.state.cylinder == pytest.approx(12.5)


def test_emergency_equalises_emergency_reservoir_into_aux(charged_car):
    charged_car.state.line_main = 30.0
    charged_car.update(1.0)
    s = charged_car.state
    assert s.valve_state == ValveState.EMERGENCY
    assert s.emergency_reservoir == pytest.approx(89.85)
    assert s.aux_reservoir == pytest.approx(89.85)


def test_pressures_stay_in_bounds(charged_car):
    for line in (90.0, 60.0, 30.0, 400.0, 0.0, 95.0):
        for _ in range(10):
            charged_car.state.line_main = line
            charged_car.update(0.5)
            for value in _pressures(charged_car.state):
                assert 0.0 <= value <= AirSinglePipe.PRESSURE_LIMIT_PSI


def test_high_pressure_retainer_holds_twenty_psi(applied_car):
    for _ in range(5):
        applied_car.state.line_main = 90.0
        applied_car.update(0.5)
    assert applied_car.state.valve_state == ValveState.RELEASE
    assert applied_car.state.cylinder < 50.0

    applied_car.set_retainer(RetainerSetting.HIGH_PRESSURE)
    for _ in range(400):
        applied_car.state.line_main = 90.0
        applied_car.update(0.5)
        assert applied_car.state.cylinder >= 20.0
    assert applied_car.state.cylinder == pytest.approx(20.0)


@pytest.mark.parametrize("setting, threshold, rate", [
    (RetainerSetting.EXHAUST, 0.0, 1.86),
    (RetainerSetting.HIGH_PRESSURE, 20.0, 30.0 / 90.0),
    (RetainerSetting.LOW_PRESSURE, 10.0, 40.0 / 60.0),
    (RetainerSetting.SLOW_DIRECT, 0.0, 40.0 / 86.0),
])
def test_retainer_presets(setting, threshold, rate):
    car = AirSinglePipe()
    car.set_retainer(setting)
    assert car.retainer_threshold_psi == pytest.approx(threshold)
    assert car.release_rate_psips == pytest.approx(rate)
    assert car.state.retainer == setting


def test_graduated_release_stops_at_reduction_pressure(applied_car):
    applied_car.graduated_release = True
    for _ in range(100):
        applied_car.state.line_main = 80.0
        applied_car.update(0.5)
    assert applied_car.state.cylinder == pytest.approx(25.0)
    assert applied_car.state.emergency_reservoir == 90.0


def test_direct_line_feeds_cylinder(charged_car):
    charged_car.state.line_aux3 = 40.0
    charged_car.update(0.5)
    assert charged_car.state.auto_cylinder == 0.0
    assert charged_car.state.cylinder == 40.0


def test_bail_off_releases_automatic_application(applied_car):
    applied_car.state.bail_off = True
    applied_car.update(1.0)
    assert applied_car.state.valve_state == ValveState.LAP
    assert applied_car.state.cylinder == pytest.approx(50.0 - 1.86)


def test_disconnected_car_keeps_its_pressures(applied_car):
    applied_car.disconnect()
    assert not applied_car.state.connected
    before = applied_car.snapshot()
    applied_car.update(1.0)
    assert applied_car.snapshot() == before
    assert applied_car.get_status() == ""
    assert applied_car.get_debug_status() == []

    applied_car.connect()
    assert applied_car.state.line_main == 0.0


def test_handbrake_floor_on_brake_force(charged_car):
    charged_car.parse_parameters({"maxHandbrakeForce": 40000})
    charged_car.set_handbrake_percent(150)
    charged_car.update(0.5)
    assert charged_car.state.handbrake_percent == 100.0
    assert charged_car.brake_force_n == pytest.approx(40000.0)

    charged_car.set_handbrake_percent(-5)
    assert not charged_car.handbrake_on


def test_valve_changes_emit_events(charged_car):
    events = []
    charged_car.add_listener(events.append)
    charged_car.state.line_main = 85.0
    charged_car.update(0.5)
    charged_car.update(0.5)
    assert events == [BrakeEvent.TRAIN_BRAKE_PRESSURE_INCREASE]

    charged_car.state.line_main = 95.0
    charged_car.update(0.5)
    assert events[-1] == BrakeEvent.TRAIN_BRAKE_PRESSURE_DECREASE


def test_failing_event_listener_is_isolated(charged_car):
    events = []

    def broken(_event):
        raise RuntimeError("boom")

    charged_car.add_listener(broken)
    charged_car.add_listener(events.append)
    charged_car.state.line_main = 85.0
    charged_car.update(0.5)
    assert events == [BrakeEvent.TRAIN_BRAKE_PRESSURE_INCREASE]


def test_parse_parameters():
    car = AirSinglePipe()
    applied = car.parse_parameters({
        "maxBrakeForceN": 100000,
        "triplevalveratio": 3.0,
        "wagon(maxreleaserate": 2.0,
        "unknown": 1,
    })
    assert applied == 3
    assert car.max_brake_force_n == 100000.0
    assert car.aux_cyl_volume_ratio == 3.0
    assert car.release_rate_psips == 2.0
    assert car.max_release_rate_psips == 2.0


def test_copy_parameters_from_same_variant():
    source = AirSinglePipe()
    source.parse_parameters({"maxBrakeForceN": 12345, "brakePipeVolumeFT3": 1.5})
    target = AirSinglePipe()
    target.copy_parameters_from(source)
    assert target.max_brake_force_n == 12345.0
    assert target.brake_pipe_volume_ft3 == 1.5

    with pytest.raises(TypeError):
        target.copy_parameters_from(VacuumSinglePipe())


def test_ai_percent_sets_line_target():
    car = AirSinglePipe()
    assert car.ai_set_percent(50) == pytest.approx(77.0)
    assert car.ai_set_percent(150) == pytest.approx(64.0)
    assert car.ai_set_percent(-10) == pytest.approx(90.0)


def test_ai_percent_follows_initialized_calibration():
    car = AirSinglePipe()
    car.initialize(False, 110.0, 80.0, False, 110.0)
    assert car.ai_set_percent(100) == pytest.approx(80.0)
    assert car.ai_set_percent(50) == pytest.approx(95.0)
    assert car.ai_brake_percent == 50.0


def test_snapshot_restore_round_trip(applied_car):
    applied_car.set_handbrake_percent(30)
    applied_car.set_retainer(RetainerSetting.LOW_PRESSURE)
    applied_car.state.line_main = 60.0
    applied_car.update(0.5)
    snap = applied_car.snapshot()

    other = AirSinglePipe()
    other.restore(snap)
    assert other.state == applied_car.state
    assert other.snapshot() == snap
    assert other.brake_force_n == pytest.approx(applied_car.brake_force_n)


def test_restore_rejects_other_variant(applied_car):
    with pytest.raises(ValueError):
        VacuumSinglePipe().restore(applied_car.snapshot())


def test_status_strings(charged_car):
    last = AirSinglePipe()
    last.initialize(False, 90.0, 50.0, False, 90.0)
    assert charged_car.get_status() == "BP 90 psi"
    assert charged_car.get_status(is_metric=True) == "BP 6.2 bar"
    assert charged_car.get_full_status(last, False, 90.0) == " EQ 90 psi BC 0 BP 90 EOT BP 90 psi"
    assert charged_car.get_debug_status() == [
        "1P", "BC 0", "BP 90", "AR 90", "ER 90", "State Lap", "", "",
    ]


# ---- twin pipe ----
def test_twin_pipe_cylinder_follows_reduction():
    car = AirTwinPipe()
    car.initialize(False, 90.0, 50.0, False, 90.0, 130.0)
    for _ in range(100):
        car.state.line_main = 80.0
        car.state.line_aux2 = 130.0
        car.update(0.5)
    assert car.state.cylinder == pytest.approx(25.0)
    assert car.state.aux_reservoir > 80.0


def test_twin_pipe_recharges_emergency_reservoir():
    car = AirTwinPipe()
    car.initialize(False, 90.0, 50.0, False, 90.0, 130.0)
    car.state.line_main = 95.0
    car.update(0.5)
    assert car.state.valve_state == ValveState.RELEASE
    assert car.state.emergency_reservoir > 90.0
    assert car.get_debug_status()[0] == "2P"
    assert car.get_debug_status()[5].startswith("MRP")


# ---- electro-pneumatic ----
def test_ep_cylinder_follows_control_line():
    car = ElectroPneumatic()
    car.initialize(False, 90.0, 50.0, False, 90.0, 130.0)
    events = []
    car.add_listener(events.append)
    car.state.ep_line = 30.0
    car.update(0.5)
    assert car.ep_state == ValveState.APPLY
    assert car.state.cylinder == pytest.approx(0.45)
    assert car.state.line_aux2 == pytest.approx(130.0 - 0.45)

    for _ in range(200):
        car.state.line_aux2 = 130.0
        car.state.ep_line = 30.0
        car.update(0.5)
    assert car.state.cylinder == pytest.approx(30.0)
    assert BrakeEvent.TRAIN_BRAKE_PRESSURE_INCREASE in events

    for _ in range(200):
        car.state.line_aux2 = 130.0
        car.state.ep_line = 0.0
        car.update(0.5)
    assert car.state.cylinder == pytest.approx(0.0)
    assert car.ep_state == ValveState.RELEASE


# ---- vacuum ----
def test_vacuum_initialize_in_absolute_pressure(vacuum_car):
    s = vacuum_car.state
    assert s.line_main == pytest.approx(ConversionFunctions.vacuum_to_psia(21.0))
    assert s.cylinder == pytest.approx(s.line_main)
    assert vacuum_car.brake_force_n == 0.0
    assert vacuum_car.get_status() == "BP 21"


def test_vacuum_admitting_air_applies(vacuum_car):
    events = []
    vacuum_car.add_listener(events.append)
    vacuum_car.state.line_main = ONE_ATMOSPHERE_PSI
    vacuum_car.update(0.5)
    assert vacuum_car.state.valve_state == ValveState.APPLY
    assert vacuum_car.state.cylinder > ConversionFunctions.vacuum_to_psia(21.0)
    assert vacuum_car.brake_force_n > 0.0
    assert events == [BrakeEvent.TRAIN_BRAKE_PRESSURE_INCREASE]

    applied = vacuum_car.state.cylinder
    vacuum_car.state.line_main = ConversionFunctions.vacuum_to_psia(21.0)
    vacuum_car.update(0.5)
    assert vacuum_car.state.valve_state == ValveState.RELEASE
    assert vacuum_car.state.cylinder < applied


def test_vacuum_effective_reservoir_never_above_cylinder(vacuum_car):
    vacuum_car.state.cylinder = 5.0
    vacuum_car.state.aux_reservoir = 4.9
    assert vacuum_car.vacuum_reservoir_pressure_psi() == 5.0
    vacuum_car.state.aux_reservoir = 3.0
    expected = 3.0 / (1 - vacuum_car.cylinder_volume / vacuum_car.reservoir_volume)
    assert vacuum_car.vacuum_reservoir_pressure_psi() == pytest.approx(expected)


def test_vacuum_ai_zero_percent_releases_at_once(vacuum_car):
    for _ in range(5):
        vacuum_car.state.line_main = ONE_ATMOSPHERE_PSI
        vacuum_car.update(0.5)
    assert vacuum_car.state.cylinder > 0.0

    target = vacuum_car.ai_set_percent(0)
    assert target == pytest.approx(21.0)
    assert vacuum_car.state.cylinder == 0.0
    assert vacuum_car.brake_force_n == 0.0

    vacuum_car.update(0.5)
    assert vacuum_car.state.cylinder == 0.0
    assert vacuum_car.brake_force_n == 0.0


def test_vacuum_snapshot_keeps_ai_percent(vacuum_car):
    vacuum_car.ai_set_percent(0)
    snap = vacuum_car.snapshot()
    assert snap.ai_brake_percent == 0.0

    other = VacuumSinglePipe()
    other.restore(snap)
    other.state.line_main = ONE_ATMOSPHERE_PSI
    other.update(0.5)
    assert other.state.cylinder == 0.0

    vacuum_car.ai_brake_percent = None
    other.restore(vacuum_car.snapshot())
    for _ in range(10):
        other.state.line_main = ONE_ATMOSPHERE_PSI
        other.update(0.5)
    assert other.state.cylinder > 0.0
    assert other.brake_force_n > 0.0


def test_vacuum_full_ai_application_admits_atmosphere(vacuum_car):
    assert vacuum_car.ai_set_percent(100) == pytest.approx(0.0)


def test_vacuum_pressures_stay_below_atmosphere(vacuum_car):
    for line in (ONE_ATMOSPHERE_PSI, 2.0, 30.0, 0.0):
        for _ in range(10):
            vacuum_car.state.line_main = line
            vacuum_car.update(0.5)
            for value in _pressures(vacuum_car.state):
                assert 0.0 <= value <= ONE_ATMOSPHERE_PSI


def test_vacuum_retainer_is_ignored(vacuum_car):
    before = vacuum_car.snapshot()
    vacuum_car.set_retainer(RetainerSetting.HIGH_PRESSURE)
    assert vacuum_car.snapshot() == before


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
