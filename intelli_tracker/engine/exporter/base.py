"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from ...models import DiffRow


class BaseExporter(ABC):
    """Uniform contract for run artifacts built from diff rows."""

    @abstractmethod
    def export(self, row: DiffRow) -> None:
        """Accept a single diff row."""

    def export_many(self, rows: Iterable[DiffRow]) -> None:
        for row in rows:
            self.export(row)

    @abstractmethod
    def flush(self) -> None:
        """Write buffered rows to the destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""

    def __enter__(self) -> "BaseExporter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["BaseExporter"]
