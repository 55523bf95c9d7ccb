"""
Audio output activity sensor using sounddevice (PortAudio) and numpy.

Reads a short window from a capture device and compares the peak absolute
amplitude against a threshold. Pointing the sensor at the output monitor
source (PulseAudio/PipeWire "Monitor of ..." device) or a loopback device
makes it observe what is being played rather than the microphone.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, ContextManager, Iterable, Mapping, Optional, Union

import numpy as np

from btidle.core.errors import AudioSampleError
from .sensors import AudioActivitySensor

log = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 0.25

# Input devices carrying what the system plays, not a microphone
OUTPUT_SOURCE_MARKERS = ("monitor", "loopback", "stereo mix")

StreamFactory = Callable[..., ContextManager[Any]]
DeviceLister = Callable[[], Iterable[Mapping[str, Any]]]


def _default_stream_factory(**kwargs: Any) -> ContextManager[Any]:
    # Imported lazily: PortAudio is loaded at import time and may be missing
    import sounddevice as sd
    return sd.InputStream(**kwargs)


def _default_device_lister() -> Iterable[Mapping[str, Any]]:
    import sounddevice as sd
    return sd.query_devices()


def _device_arg(device: Optional[str]) -> Union[int, str, None]:
    if device is None or device == "":
        return None
    return int(device) if device.isdigit() else device


def find_output_monitor(devices: Iterable[Mapping[str, Any]]) -> Optional[int]:
    """Index of the first capture device that mirrors audio output, or None."""
    for index, dev in enumerate(devices):
        name = str(dev.get("name", "")).lower()
        if dev.get("max_input_channels", 0) > 0 and any(m in name for m in OUTPUT_SOURCE_MARKERS):
            return int(dev.get("index", index))
    return None


def peak_level(frames: Any) -> float:
    """Peak absolute amplitude of a float sample block, 0.0 for an empty block."""
    arr = np.asarray(frames, dtype=np.float32)
    if arr.size == 0:
        return 0.0
    return float(np.max(np.abs(arr)))


class SoundDeviceAudioSensor(AudioActivitySensor):
    """
    Samples the capture device for `window_seconds` per call.

    Without an explicit device the output monitor/loopback source is looked
    up on every sample; the default input (microphone) is never used.
    A new stream is opened for every sample and closed before returning, so no
    capture handle outlives a tick.
    """

    def __init__(
        self,
        device: Optional[str] = None,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        stream_factory: Optional[StreamFactory] = None,
        device_lister: Optional[DeviceLister] = None,
    ) -> None:
        self._device = _device_arg(device)
        self._window_seconds = window_seconds
        self._stream_factory = stream_factory or _default_stream_factory
        self._device_lister = device_lister or _default_device_lister

    def sample(self, threshold: float) -> bool:
        try:
            peak = self._read_peak()
        except AudioSampleError as e:
            log.warning(f"{e}; treating as no activity")
            return False

        active = bool(peak > threshold)
        log.debug(f"Audio peak {peak:.4f} vs threshold {threshold:.4f} -> {'active' if active else 'silent'}")
        return active

    def _capture_device(self) -> Union[int, str]:
        if self._device is not None:
            return self._device
        try:
            index = find_output_monitor(self._device_lister())
        except Exception as e:
            raise AudioSampleError(f"Audio device query failed: {e}") from e
        if index is None:
            raise AudioSampleError("No output monitor/loopback capture device found; set audio_device")
        return index

    def _read_peak(self) -> float:
        device = self._capture_device()
        try:
            with self._stream_factory(device=device, dtype="float32") as stream:
                frames = max(1, int(self._window_seconds * float(stream.samplerate)))
                data, overflowed = stream.read(frames)
                if overflowed:
                    log.debug("Audio input overflow during sample")
                return peak_level(data)
        except Exception as e:
            raise AudioSampleError(f"Audio sample failed: {e}") from e
