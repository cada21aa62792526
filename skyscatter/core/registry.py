"""
LUT registry - owns every named lookup table of a precompute run.
"""

import logging
from typing import Dict, Iterator, List, Tuple

from .device import ComputeDevice, FilterMode, Texture, TextureFormat

logger = logging.getLogger(__name__)


class LUTRegistry:
    """
    Named texture store.

    ``get_or_create`` hands back the existing handle while the requested
    dimensions match, and reallocates the table when they change.
    """

    def __init__(self, device: ComputeDevice):
        self.device = device
        self._tables: Dict[str, Texture] = {}

    def get_or_create(
        self,
        name: str,
        size: Tuple[int, ...],
        fmt: TextureFormat = TextureFormat.RGBA_HALF,
        random_write: bool = False,
        filter_mode: FilterMode = FilterMode.BILINEAR,
    ) -> Texture:
        size = tuple(int(s) for s in size)
        existing = self._tables.get(name)
        if existing is not None:
            if existing.size == size and existing.fmt == fmt:
                return existing
            logger.debug("Reallocating %s: %s -> %s", name, existing.size, size)
            self.device.release_texture(existing)

        table = self.device.create_texture(
            name, size, fmt=fmt, random_write=random_write, filter_mode=filter_mode
        )
        if existing is None:
            logger.debug("Created LUT %s %s", name, "x".join(str(s) for s in size))
        self._tables[name] = table
        return table

    def get(self, name: str) -> Texture:
        return self._tables[name]

    def __contains__(self, name: str) -> bool:
        return name in self._tables

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    @property
    def names(self) -> List[str]:
        return list(self._tables)

    def release(self) -> None:
        """Destroy every table."""
        for table in self._tables.values():
            self.device.release_texture(table)
        if self._tables:
            logger.debug("Released %d LUTs", len(self._tables))
        self._tables.clear()
