from __future__ import annotations

from abc import ABC, abstractmethod

from ..domain.models import ClimateSample


class Sensor(ABC):
    """Domain-facing climate sensor abstraction."""

    @property
    @abstractmethod
    def sensor_id(self) -> str:
        ...

    @abstractmethod
    def read(self) -> ClimateSample:
        """Return one sample of the cave climate. Blocking; raise on transport failure.

        Implementations must bound their own I/O with a timeout.
        """
        ...

    def close(self) -> None:
        pass
