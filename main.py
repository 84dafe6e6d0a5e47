import sys
import os
import logging
logging.basicConfig(level=logging.INFO)

# Set up sys.path for module imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from brakeModel.brake_backend import TrainBrakeBackend
from brakeModel.train import BrakeCar, Locomotive, Train
from universal.global_clock import clock

logger = logging.getLogger(__name__)


def build_train(wagons: int = 20, brake_type: str = "air_single_pipe") -> Train:
    cars = [Locomotive("L1", brake_type)]
    cars += [BrakeCar("W%02d" % (i + 1), brake_type) for i in range(wagons)]
    return Train(cars, lead_index=0)


def log_status(backend: TrainBrakeBackend, label: str) -> None:
    state = backend.report_state()
    logger.info(
        "%s %s | %s | force %.0f kN",
        clock,
        label,
        backend.status_line(),
        state["total_brake_force_n"] / 1000.0,
    )


if __name__ == "__main__":
    brake_type = sys.argv[1] if len(sys.argv) > 1 else "air_single_pipe"
    backend = TrainBrakeBackend(build_train(brake_type=brake_type))
    backend.initialize()
    backend.attach_clock(clock)
    handle = backend.train.lead_locomotive.train_brake_controller

    clock.set_speed(5.0)
    handle.set_full_brake()
    for _ in range(6):
        clock.run(ticks=10)
        log_status(backend, "apply")

    handle.set_notch(0)
    for _ in range(12):
        clock.run(ticks=10)
        log_status(backend, "release")

    for row in backend.debug_table():
        logger.info(" ".join(row))
