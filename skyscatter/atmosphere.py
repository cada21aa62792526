"""
AtmosphericScattering - host-facing component.

Wraps the precompute and the per-frame aerial perspective behind the
lifecycle a renderer drives: ``start`` once, ``on_pre_render`` and
``on_render_image`` every frame, ``release`` at teardown.
"""

import logging
from typing import Optional

import numpy as np

from .core.aerial import AerialPerspective
from .core.binder import Material, ParameterBinder
from .core.errors import ConfigurationError
from .core.parameters import (
    AtmosphereParameters,
    CameraState,
    PrecomputeSettings,
    SunLight,
)
from .core.precompute import (
    REQUIRED_KERNELS,
    PrecomputeContext,
    PrecomputeResult,
    ScatteringPrecompute,
)
from .core.constants import KERNEL_AERIAL_PERSPECTIVE, KERNEL_COMPOSITE
from .core.device import ComputeDevice
from .core.software import SoftwareDevice

logger = logging.getLogger(__name__)

SKYBOX_SHADER = "Skybox/AtmosphericScattering"


class AtmosphericScattering:
    """
    Atmosphere component.

    Args:
        device: Compute device; a CPU SoftwareDevice when omitted
        params: Physical parameters, Earth defaults when omitted
        sun: Directional light; required before ``start``
        settings: LUT sizes, order count, persistence
        skybox: Skybox material receiving the sky uniforms
    """

    def __init__(
        self,
        device: Optional[ComputeDevice] = None,
        params: Optional[AtmosphereParameters] = None,
        sun: Optional[SunLight] = None,
        settings: Optional[PrecomputeSettings] = None,
        skybox: Optional[Material] = None,
    ):
        self.device = device or SoftwareDevice()
        self.params = params or AtmosphereParameters.earth_default()
        self.settings = settings or PrecomputeSettings()
        self.skybox = skybox if skybox is not None else Material(SKYBOX_SHADER)
        self.composite_material = Material("AtmosphericScattering/Composite")

        self.binder = ParameterBinder(self.params, sun, self.settings)
        self.precompute = ScatteringPrecompute(self.device, self.binder, self.settings)
        self.aerial = AerialPerspective(self.device, self.binder)

        self.context: Optional[PrecomputeContext] = None
        self.result: Optional[PrecomputeResult] = None
        self._initialized = False

    @property
    def sun(self) -> Optional[SunLight]:
        return self.binder.sun

    @sun.setter
    def sun(self, value: Optional[SunLight]) -> None:
        self.binder.sun = value

    def validate(self) -> str:
        """
        Describe every configuration problem, one line each.

        Returns:
            Empty string when the component can start
        """
        problems = []
        if self.skybox is None:
            problems.append("! Skybox material is missing")
        elif self.skybox.name != SKYBOX_SHADER:
            problems.append("! Skybox material is using wrong shader")
        missing = [name for name in REQUIRED_KERNELS + (KERNEL_AERIAL_PERSPECTIVE, KERNEL_COMPOSITE)
                   if not self.device.has_kernel(name)]
        if missing:
            problems.append(
                f"! Atmospheric Scattering compute kernel(s) missing: {', '.join(missing)}"
            )
        if self.sun is None:
            problems.append("! Sun (main directional light) isn't set")
        try:
            self.params.validate()
        except ConfigurationError as e:
            problems.append(f"! {e}")
        return "".join(line + "\n" for line in problems)

    def is_initialized(self) -> bool:
        return self._initialized

    def start(self, progress_callback=None) -> PrecomputeResult:
        """Validate, precompute every table and allocate the aerial volumes."""
        problems = self.validate()
        if problems:
            raise ConfigurationError(problems.strip())
        result = self.calculate_atmosphere(progress_callback)
        self.aerial.allocate(self.context.registry)
        return result

    def calculate_atmosphere(self, progress_callback=None) -> PrecomputeResult:
        """
        (Re)run the full precompute. Tables of a previous run are reused
        while their dimensions match. The component stays uninitialised when
        the run raises.
        """
        if self.context is None:
            self.context = self.precompute.new_context()
        context = self.context
        context.output_dir = self.settings.output_dir
        self._initialized = False
        self.result = None
        self.aerial.reset()
        self.result = self.precompute.run(context, progress_callback)
        self._initialized = True
        self.binder.apply_material(self.skybox, context.registry)
        return self.result

    def on_pre_render(self, camera: CameraState) -> None:
        """Update the skybox material and evaluate the aerial perspective."""
        if not self._initialized:
            return
        registry = self.context.registry
        self.binder.update_skybox(
            self.skybox, registry, camera.position, self.settings.render_mode
        )
        if self.settings.render_atmospheric_fog:
            bindings = self.aerial.evaluate(self.context, camera)
            self.binder.apply_material(self.composite_material, registry)
            self.composite_material.update(bindings)

    def on_render_image(self, source: np.ndarray, depth: np.ndarray) -> np.ndarray:
        """
        Composite the aerial perspective over an opaque scene image.

        Returns ``source`` unchanged when the component is not initialised,
        atmospheric fog is disabled or no frame has been evaluated yet.
        """
        if not self._initialized or not self.settings.render_atmospheric_fog:
            return source
        if self.aerial.frames == 0:
            return source
        self.composite_material.set('_Background', source)
        return self.aerial.composite(self.context, source, depth)

    def release(self) -> None:
        """Destroy every table and return to the uninitialised state."""
        if self.context is not None:
            self.context.registry.release()
        self.context = None
        self.result = None
        self.aerial.reset()
        self._initialized = False
