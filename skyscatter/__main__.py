"""
Command line interface.

    python -m skyscatter precompute --output luts/ [--orders 4] [--config atmo.json] [--exr]
    python -m skyscatter inspect luts/skyboxlut.ktx
    python -m skyscatter compare luts_a/ luts_b/
"""

import argparse
import json
import logging
import os
import sys

import numpy as np

from .core import bridge
from .core.binder import ParameterBinder
from .core.errors import SkyScatterError
from .core.parameters import AtmosphereParameters, PrecomputeSettings, SunLight
from .core.precompute import ScatteringPrecompute
from .core.software import SoftwareDevice
from .utils import exr, ktx


def create_parser():
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="skyscatter",
        description="Precompute atmospheric scattering lookup tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only report errors")
    parser.add_argument("--log-file", type=str, default=None, help="Also log to this file")

    commands = parser.add_subparsers(dest="command", required=True)

    precompute = commands.add_parser("precompute", help="Run the precompute and write KTX files")
    precompute.add_argument("--output", type=str, required=True, help="Output directory (required)")
    precompute.add_argument("--orders", type=int, default=None,
                            help="Number of scattering orders (default: from config, else 3)")
    precompute.add_argument("--config", type=str, default=None,
                            help="JSON file with 'atmosphere', 'sun' and 'settings' sections")
    precompute.add_argument("--exr", action="store_true", help="Also export final tables as EXR")
    precompute.add_argument("--gpu", action="store_true", help="Use CuPy when available")

    inspect = commands.add_parser("inspect", help="Print the header and value range of a KTX file")
    inspect.add_argument("path", type=str)

    compare = commands.add_parser("compare", help="Byte-compare the KTX files of two directories")
    compare.add_argument("dir_a", type=str)
    compare.add_argument("dir_b", type=str)

    return parser


def setup_logging(args):
    """Setup logging based on verbosity."""
    if args.quiet:
        level = logging.ERROR
    elif args.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if args.log_file:
        handlers.append(logging.FileHandler(args.log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("skyscatter")


def load_config(path):
    """
    Read a JSON run configuration.

    Returns:
        (AtmosphereParameters, SunLight, dict of settings overrides)
    """
    config = {}
    if path:
        with open(path) as f:
            config = json.load(f)

    params = AtmosphereParameters.from_dict(config.get("atmosphere", {}))

    sun = SunLight.from_dict(config.get("sun", {}))
    return params, sun, dict(config.get("settings", {}))


def run_precompute(args, logger) -> int:
    params, sun, overrides = load_config(args.config)
    overrides["output_dir"] = args.output
    if args.orders is not None:
        overrides["num_scattering_orders"] = args.orders
    settings = PrecomputeSettings.from_dict(overrides)

    device = SoftwareDevice(use_gpu=args.gpu)
    binder = ParameterBinder(params, sun, settings)
    precompute = ScatteringPrecompute(device, binder, settings)
    logger.info("Backend: %s", device.backend.name)

    result = precompute.run(
        progress_callback=lambda progress, message: logger.debug("%3.0f%% %s", progress * 100, message)
    )

    with open(os.path.join(args.output, "config.json"), "w") as f:
        json.dump({
            "atmosphere": params.to_dict(),
            "sun": {
                "direction": sun.direction.tolist(),
                "color": sun.color.tolist(),
                "intensity": sun.intensity,
                "range": sun.range,
            },
            "settings": settings.to_dict(),
        }, f, indent=2)

    if args.exr:
        tables = {
            name: bridge.readback(device, table).reshape(table.array_shape)
            for name, table in result.tables.items()
        }
        exr.export_tables(tables, args.output)

    logger.info("Wrote %d tables to %s in %.2fs",
                len(result.persisted), args.output, result.elapsed)
    return 0


def run_inspect(args, logger) -> int:
    image = ktx.read_ktx(args.path)
    print(f"{args.path}")
    print(f"  glType:            0x{image.gl_type:04X}")
    print(f"  glInternalFormat:  0x{image.gl_internal_format:04X}")
    print(f"  size:              {image.width} x {image.height} x {image.depth}")
    print(f"  imageSize:         {image.image_size}")
    if image.data.size:
        rgba = image.data.reshape(-1, 4)
        print(f"  min:               {np.round(rgba.min(axis=0), 6).tolist()}")
        print(f"  max:               {np.round(rgba.max(axis=0), 6).tolist()}")
    return 0


def run_compare(args, logger) -> int:
    def ktx_files(directory):
        return {name for name in os.listdir(directory) if name.endswith(".ktx")}

    files_a = ktx_files(args.dir_a)
    files_b = ktx_files(args.dir_b)
    differences = 0

    for name in sorted(files_a ^ files_b):
        print(f"only in {'A' if name in files_a else 'B'}: {name}")
        differences += 1

    for name in sorted(files_a & files_b):
        with open(os.path.join(args.dir_a, name), "rb") as f:
            raw_a = f.read()
        with open(os.path.join(args.dir_b, name), "rb") as f:
            raw_b = f.read()
        if raw_a != raw_b:
            print(f"differs: {name}")
            differences += 1
        else:
            logger.debug("identical: %s", name)

    if differences:
        print(f"{differences} difference(s)")
        return 1
    print(f"{len(files_a)} file(s) identical")
    return 0


COMMANDS = {
    "precompute": run_precompute,
    "inspect": run_inspect,
    "compare": run_compare,
}


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    logger = setup_logging(args)

    try:
        return COMMANDS[args.command](args, logger)
    except (SkyScatterError, OSError) as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
