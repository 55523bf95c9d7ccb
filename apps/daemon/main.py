import logging
import signal
import sys

from btidle.shared.paths import ensure_app_dirs
from btidle.shared.store import ConfigStore
from btidle.core.errors import FatalLoopError
from btidle.core.logging_ import setup_logging
from btidle.core.monitor.audio_sensor import SoundDeviceAudioSensor
from btidle.core.monitor.bluez_directory import BluezDeviceDirectory
from btidle.core.monitor.connection_monitor import ConnectionMonitor

log = logging.getLogger(__name__)


def main() -> None:
    ensure_app_dirs()
    activity_log = setup_logging()

    store = ConfigStore()
    cfg = store.load()
    log.info(f"Starting with config {store.path()}")

    monitor = ConnectionMonitor(
        store=store,
        directory=BluezDeviceDirectory(),
        sensor=SoundDeviceAudioSensor(device=cfg.audio_device),
        activity_log=activity_log,
        config=cfg,
    )

    # Stop at the next tick or sleep boundary
    def signal_handler(sig, frame):
        log.info(f"Received signal {sig}, shutting down...")
        monitor.stop()

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        monitor.run()
    except FatalLoopError as e:
        log.critical(f"Fatal error, exiting: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
