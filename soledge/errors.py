from __future__ import annotations

from collections.abc import Iterable


class SoledgeError(Exception):
    """Base class for every error raised by the sync and control core."""


class ConnectivityError(SoledgeError):
    """The store subscription or a one-shot read could not reach the store."""


class WriteError(SoledgeError):
    def __init__(self, message: str, device_ids: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.device_ids: tuple[str, ...] = tuple(device_ids)


class BusyError(SoledgeError):
    def __init__(self, device_ids: Iterable[str]) -> None:
        self.device_ids: tuple[str, ...] = tuple(device_ids)
        super().__init__(f"write already pending for {', '.join(self.device_ids)}")


class ConfigurationError(SoledgeError):
    """Settings are invalid, or a snapshot carried no recognized device keys."""


class UnknownDeviceError(SoledgeError):
    def __init__(self, device_id: str) -> None:
        super().__init__(f"unknown device {device_id!r}")
        self.device_id = device_id


class PredictionError(SoledgeError):
    """The consumption predictor could not be reached or answered badly."""
