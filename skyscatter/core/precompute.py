"""
Scattering-order precompute.

Builds the transmittance table, single scattering, then iterates the
gather / re-scatter loop once per scattering order, summing each order's
gathered radiance and each order's skybox into running totals. Intermediate
and final tables are persisted as KTX files when an output directory is set.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from . import bridge
from .binder import ParameterBinder
from .constants import (
    KERNEL_TRANSMITTANCE,
    KERNEL_SKYBOX,
    KERNEL_GATHER_SUM,
    KERNEL_MULTIPLE_SCATTER,
    KERNEL_SKYLIGHT,
    KERNEL_SUNLIGHT,
    KERNEL_READ_TEXTURE,
    KERNEL_WRITE_TEXTURE,
    TRANSMITTANCE_LUT,
    SKYBOX_LUT,
    SKYBOX_LUT_WORK,
    SKYBOX_LUT_SINGLE,
    GATHER_SUM_LUT,
    GATHER_SUM_LUT_ORDER,
    SKYLIGHT_LUT,
    SUNLIGHT_LUT,
)
from .device import ComputeDevice, Texture
from .parameters import PrecomputeSettings
from .registry import LUTRegistry
from ..utils import ktx

logger = logging.getLogger(__name__)

REQUIRED_KERNELS = (
    KERNEL_TRANSMITTANCE,
    KERNEL_SKYBOX,
    KERNEL_GATHER_SUM,
    KERNEL_MULTIPLE_SCATTER,
    KERNEL_SKYLIGHT,
    KERNEL_SUNLIGHT,
    KERNEL_READ_TEXTURE,
    KERNEL_WRITE_TEXTURE,
)

ProgressCallback = Callable[[float, str], None]


def _extent(table: Texture):
    return (table.width, table.height, max(table.depth, 1))


@dataclass
class PrecomputeContext:
    """
    State owned by one precompute run.

    Args:
        registry: Tables of the run
        output_dir: Directory for persisted KTX files, None to skip persistence
        keep_history: Keep a host copy of each order's gather and skybox tables
    """
    registry: LUTRegistry
    output_dir: Optional[str] = None
    keep_history: bool = False

    # Sum of every order's skybox readback, float32
    accumulation: Optional[np.ndarray] = None
    gather_initialized: bool = False
    orders_completed: int = 0
    completed: bool = False
    persisted: List[str] = field(default_factory=list)
    gather_history: List[np.ndarray] = field(default_factory=list)
    skybox_history: List[np.ndarray] = field(default_factory=list)

    def reset(self) -> None:
        """Clear the per-run state; the registry and its tables are kept."""
        self.accumulation = None
        self.gather_initialized = False
        self.orders_completed = 0
        self.completed = False
        self.persisted = []
        self.gather_history = []
        self.skybox_history = []

    def persist(self, device: ComputeDevice, table: Texture, name: str, tiled: bool = False) -> Optional[str]:
        if self.output_dir is None:
            return None
        path = ktx.save(device, table, name, self.output_dir, tile_volume_to_2d=tiled)
        self.persisted.append(path)
        return path


@dataclass
class PrecomputeResult:
    """Outcome of a completed run."""
    tables: Dict[str, Texture]
    persisted: List[str]
    orders: int
    elapsed: float


class ScatteringPrecompute:
    """
    Runs the precompute sequence on a compute device.

    Args:
        device: Device exposing every kernel in ``REQUIRED_KERNELS``
        binder: Supplies the uniforms every kernel shares
        settings: Table sizes, sample counts, order count and output directory
    """

    def __init__(
        self,
        device: ComputeDevice,
        binder: ParameterBinder,
        settings: Optional[PrecomputeSettings] = None,
    ):
        self.device = device
        self.binder = binder
        self.settings = settings or binder.settings

    def new_context(self, keep_history: bool = False) -> PrecomputeContext:
        return PrecomputeContext(
            registry=LUTRegistry(self.device),
            output_dir=self.settings.output_dir,
            keep_history=keep_history,
        )

    def check_configuration(self) -> None:
        """
        Raise ConfigurationError for a missing kernel, a missing sun or an
        invalid parameter set. Nothing has been dispatched when this raises.
        """
        self.device.require_kernels(REQUIRED_KERNELS)
        self.binder.require_sun()
        self.binder.params.validate()

    def run(
        self,
        context: Optional[PrecomputeContext] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> PrecomputeResult:
        """
        Execute the full precompute.

        Args:
            context: Run state; a fresh one is created when omitted. A
                reused context keeps its tables and restarts its totals.
            progress_callback: Optional callback(progress, message)

        Returns:
            PrecomputeResult with the final tables and persisted paths
        """
        self.check_configuration()
        ctx = context or self.new_context()
        ctx.reset()
        orders = self.settings.num_scattering_orders
        start = time.perf_counter()

        def report(progress: float, message: str):
            logger.info(message)
            if progress_callback:
                progress_callback(progress, message)

        report(0.0, "Computing transmittance LUT...")
        self._transmittance(ctx)

        report(0.1, "Computing single scattering...")
        self._single_scattering(ctx)

        for order in range(1, orders + 1):
            report(0.2 + 0.6 * (order - 1) / orders, f"Computing scattering order {order}...")
            self._scattering_order(ctx, order)

        report(0.8, "Compositing skybox...")
        self._composite_skybox(ctx)

        report(0.9, "Computing sky and sun light...")
        self._ambient(ctx)

        ctx.completed = True
        elapsed = time.perf_counter() - start
        report(1.0, f"Precomputation complete ({orders} orders, {elapsed:.2f}s).")

        names = (TRANSMITTANCE_LUT, SKYBOX_LUT, SKYBOX_LUT_SINGLE,
                 GATHER_SUM_LUT, SKYLIGHT_LUT, SUNLIGHT_LUT)
        return PrecomputeResult(
            tables={name: ctx.registry.get(name) for name in names},
            persisted=list(ctx.persisted),
            orders=orders,
            elapsed=elapsed,
        )

    # =========================================================================
    # STAGES
    # =========================================================================
    def _bindings(self, ctx: PrecomputeContext, **extra) -> dict:
        bindings = self.binder.compute_bindings(ctx.registry)
        bindings.update(extra)
        return bindings

    def _transmittance(self, ctx: PrecomputeContext) -> None:
        table = ctx.registry.get_or_create(
            TRANSMITTANCE_LUT, self.settings.transmittance_lut_size, random_write=True
        )
        self.device.dispatch(KERNEL_TRANSMITTANCE, _extent(table), self._bindings(ctx))
        ctx.persist(self.device, table, "transmittance")

    def _single_scattering(self, ctx: PrecomputeContext) -> None:
        size = self.settings.skybox_lut_size
        work = ctx.registry.get_or_create(SKYBOX_LUT_WORK, size, random_write=True)
        single = ctx.registry.get_or_create(SKYBOX_LUT_SINGLE, size, random_write=True)
        self.device.dispatch(
            KERNEL_SKYBOX, _extent(work),
            self._bindings(ctx, _SkyboxLUT2=work, _SkyboxLUTSingle=single),
        )
        ctx.persist(self.device, single, "skyboxlutsingle", tiled=True)

    def _scattering_order(self, ctx: PrecomputeContext, order: int) -> None:
        registry = ctx.registry
        work = registry.get(SKYBOX_LUT_WORK)
        gather_size = self.settings.gather_sum_lut_size
        gather_order = registry.get_or_create(GATHER_SUM_LUT_ORDER, gather_size, random_write=True)
        gather_total = registry.get_or_create(GATHER_SUM_LUT, gather_size, random_write=True)

        # Gather the previous order's radiance
        self.device.dispatch(
            KERNEL_GATHER_SUM, _extent(gather_order),
            self._bindings(ctx, _GatherSumLUT2=gather_order, _SkyboxLUT2=work,
                           _SingleScatterSource=order == 1),
        )
        ctx.persist(self.device, gather_order, f"gathersum{order}")

        order_data = bridge.readback(self.device, gather_order)
        if ctx.keep_history:
            ctx.gather_history.append(order_data.copy())
        if ctx.gather_initialized:
            total = bridge.readback(self.device, gather_total) + order_data
        else:
            total = order_data
        bridge.writeback(self.device, gather_total, total)
        ctx.gather_initialized = True
        ctx.persist(self.device, gather_total, "gathersum")

        # Re-scatter the running total along every skybox ray
        self.device.dispatch(
            KERNEL_MULTIPLE_SCATTER, _extent(work),
            self._bindings(ctx, _SkyboxLUT2=work, _GatherSumLUT=gather_total),
        )
        ctx.persist(self.device, work, f"skyboxlut{order}", tiled=True)

        skybox = bridge.readback(self.device, work)
        if ctx.keep_history:
            ctx.skybox_history.append(skybox.copy())
        if ctx.accumulation is None:
            ctx.accumulation = skybox
        else:
            ctx.accumulation += skybox
        ctx.orders_completed = order
        logger.debug("Order %d: gather max %.6g, skybox max %.6g",
                     order, float(order_data.max()), float(skybox.max()))

    def _composite_skybox(self, ctx: PrecomputeContext) -> None:
        skybox = ctx.registry.get_or_create(
            SKYBOX_LUT, self.settings.skybox_lut_size, random_write=True
        )
        bridge.writeback(self.device, skybox, ctx.accumulation)
        ctx.persist(self.device, skybox, "skyboxlut", tiled=True)

    def _ambient(self, ctx: PrecomputeContext) -> None:
        registry = ctx.registry
        size = self.settings.transmittance_lut_size
        skylight = registry.get_or_create(SKYLIGHT_LUT, size, random_write=True)
        sunlight = registry.get_or_create(SUNLIGHT_LUT, size, random_write=True)

        self.device.dispatch(
            KERNEL_SKYLIGHT, _extent(skylight),
            self._bindings(ctx, _SkylightLUT=skylight,
                           _SkyboxLUT=registry.get(SKYBOX_LUT),
                           _SkyboxLUTSingle=registry.get(SKYBOX_LUT_SINGLE)),
        )
        ctx.persist(self.device, skylight, "skylightlut")

        self.device.dispatch(
            KERNEL_SUNLIGHT, _extent(sunlight),
            self._bindings(ctx, _SunlightLUT=sunlight),
        )
        ctx.persist(self.device, sunlight, "sunlightlut")
