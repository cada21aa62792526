"""
Aerial perspective - per-frame inscattering/extinction volume over the
camera frustum, evaluated from the converged precompute tables.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .binder import ParameterBinder
from .constants import (
    KERNEL_AERIAL_PERSPECTIVE,
    KERNEL_COMPOSITE,
    GATHER_SUM_LUT,
    TRANSMITTANCE_LUT,
    INSCATTERING_LUT,
    EXTINCTION_LUT,
)
from .device import ComputeDevice
from .errors import ConfigurationError, ResourceError
from .parameters import CameraState, SunLight
from .precompute import PrecomputeContext
from .registry import LUTRegistry

logger = logging.getLogger(__name__)


class AerialPerspective:
    """
    Evaluates the aerial perspective volume once per frame.

    Args:
        device: Device exposing the ``AerialPerspLUT`` kernel
        binder: Shared uniform source
        size: (width, height, depth) of the volume; defaults to the
            binder's settings
    """

    def __init__(
        self,
        device: ComputeDevice,
        binder: ParameterBinder,
        size: Optional[Tuple[int, int, int]] = None,
    ):
        self.device = device
        self.binder = binder
        self.size = tuple(size or binder.settings.inscattering_lut_size)
        self._persisted = False
        self.frames = 0

    def allocate(self, registry: LUTRegistry):
        """Create (or fetch) the inscattering and extinction volumes."""
        inscatter = registry.get_or_create(INSCATTERING_LUT, self.size, random_write=True)
        extinction = registry.get_or_create(EXTINCTION_LUT, self.size, random_write=True)
        return inscatter, extinction

    def reset(self) -> None:
        """Forget evaluated frames, e.g. after the tables were released."""
        self._persisted = False
        self.frames = 0

    def evaluate(
        self,
        context: PrecomputeContext,
        camera: CameraState,
        sun: Optional[SunLight] = None,
    ) -> Dict[str, Any]:
        """
        Fill the volumes for the current camera.

        Args:
            context: Completed precompute context
            camera: Camera position and far-plane corners
            sun: Light for this frame, defaults to the binder's sun

        Returns:
            Compositing bindings: both volumes and the frustum corners
        """
        if not context.completed:
            raise ConfigurationError("Aerial perspective needs a completed precompute")
        self.device.require_kernels([KERNEL_AERIAL_PERSPECTIVE])
        if sun is not None:
            self.binder.sun = sun
        sun = self.binder.require_sun()

        registry = context.registry
        inscatter, extinction = self.allocate(registry)
        bindings = self.binder.compute_bindings(registry)
        corners = camera.corners
        bindings.update({
            '_InscatteringLUT': inscatter,
            '_ExtinctionLUT': extinction,
            '_GatherSumLUT': registry.get(GATHER_SUM_LUT),
            '_TransmittanceLUT': registry.get(TRANSMITTANCE_LUT),
            '_BottomLeftCorner': corners[0],
            '_TopLeftCorner': corners[1],
            '_TopRightCorner': corners[2],
            '_BottomRightCorner': corners[3],
            '_CameraPos': camera.position,
            '_LightDir': sun.direction,
        })
        self.device.dispatch(
            KERNEL_AERIAL_PERSPECTIVE, (inscatter.width, inscatter.height, 1), bindings
        )

        persist = self.binder.settings.persist_aerial_perspective
        if persist and context.output_dir is not None and not self._persisted:
            context.persist(self.device, inscatter, "apinscatter", tiled=True)
            context.persist(self.device, extinction, "apextinction", tiled=True)
            self._persisted = True

        self.frames += 1
        return {
            '_InscatteringLUT': inscatter,
            '_ExtinctionLUT': extinction,
            '_FrustumCorners': camera.corners_vec4(),
        }

    def composite(
        self,
        context: PrecomputeContext,
        background: np.ndarray,
        depth: np.ndarray,
    ) -> np.ndarray:
        """
        Apply the current volumes to an image.

        Args:
            context: Context holding the evaluated volumes
            background: (H, W, 3 or 4) scene colour, row 0 at the bottom
            depth: (H, W) linear depth as a fraction of the far plane

        Returns:
            New colour array of the same shape and dtype as ``background``
        """
        self.device.require_kernels([KERNEL_COMPOSITE])
        background = np.asarray(background)
        depth = np.asarray(depth)
        if background.ndim != 3 or background.shape[:2] != depth.shape:
            raise ResourceError(
                f"Colour {background.shape} and depth {depth.shape} do not match"
            )
        if self.frames == 0 or INSCATTERING_LUT not in context.registry:
            raise ConfigurationError("Aerial perspective has not been evaluated")

        destination = np.empty_like(background)
        self.device.dispatch(
            KERNEL_COMPOSITE,
            (depth.shape[1], depth.shape[0], 1),
            {
                '_Background': background,
                '_Depth': depth,
                '_Destination': destination,
                '_InscatteringLUT': context.registry.get(INSCATTERING_LUT),
                '_ExtinctionLUT': context.registry.get(EXTINCTION_LUT),
            },
        )
        return destination
