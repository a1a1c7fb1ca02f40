"""
Command line interface.

Usage:
    octree-nbody [--bodies N] [--distribution {cube,sphere}] [--steps N | --duration T] ...

Examples:
    octree-nbody --bodies 1000 --steps 50 --output-dir output
    octree-nbody --bodies 5000 --distribution sphere --extent 1e12 \\
        --mass-distribution log-uniform --mass-min 1e28 --mass-max 1e31 \\
        --dt 3600 --duration 86400 --checkpoint run.db
    octree-nbody --gravitational-constant 1 --theta 0.3 --seed 7 -v
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from . import __version__
from .checkpoint import StorageError
from .constants import DEFAULT_MARGIN, DEFAULT_OPENING_ANGLE, G
from .generators import (
    MassSampler,
    constant_mass,
    log_uniform_mass,
    uniform_cube,
    uniform_mass,
    uniform_sphere,
)
from .metrics import summary
from .simulation import DEFAULT_STEPS, Simulation
from .validation import ValidationError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="octree-nbody",
        description="Barnes-Hut octree n-body gravity simulation",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    init = parser.add_argument_group("initial conditions")
    init.add_argument("--bodies", type=int, default=1000, help="Number of bodies")
    init.add_argument(
        "--distribution",
        choices=["cube", "sphere"],
        default="cube",
        help="Spatial distribution of the initial bodies",
    )
    init.add_argument(
        "--extent",
        type=float,
        default=1000.0,
        help="Cube edge length or sphere radius of the initial distribution",
    )
    init.add_argument(
        "--mass-distribution",
        choices=["constant", "uniform", "log-uniform"],
        default="constant",
    )
    init.add_argument("--mass", type=float, default=1.0, help="Mass for the constant distribution")
    init.add_argument("--mass-min", type=float, default=1.0)
    init.add_argument("--mass-max", type=float, default=10.0)
    init.add_argument(
        "--velocity-dispersion",
        type=float,
        default=0.0,
        help="Standard deviation of each initial velocity component",
    )
    init.add_argument("--seed", type=int, default=None, help="Random seed")

    tree = parser.add_argument_group("tree")
    tree.add_argument("--theta", type=float, default=DEFAULT_OPENING_ANGLE, help="Opening angle")
    tree.add_argument(
        "--region-origin",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        help="Initial region origin (fitted around the bodies if omitted)",
    )
    tree.add_argument("--region-edge", type=float, help="Initial region edge length")
    tree.add_argument("--margin", type=float, default=DEFAULT_MARGIN, help="Region refit padding")
    tree.add_argument("--gravitational-constant", type=float, default=G)

    run = parser.add_argument_group("run")
    run.add_argument("--dt", type=float, default=1.0, help="Time step")
    length = run.add_mutually_exclusive_group()
    length.add_argument("--steps", type=int, help=f"Number of steps (default {DEFAULT_STEPS})")
    length.add_argument("--duration", type=float, help="Total simulated time")
    run.add_argument("--workers", type=int, default=None, help="Force-pass thread pool size")
    run.add_argument("--output-dir", help="Directory for per-step CSV files")
    run.add_argument("--checkpoint", help="Checkpoint database path")
    run.add_argument("--log-interval", type=int, default=10)

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings")
    return parser


def _mass_sampler(args: argparse.Namespace) -> MassSampler:
    if args.mass_distribution == "uniform":
        return uniform_mass(args.mass_min, args.mass_max)
    if args.mass_distribution == "log-uniform":
        return log_uniform_mass(args.mass_min, args.mass_max)
    return constant_mass(args.mass)


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    if (args.region_origin is None) != (args.region_edge is None):
        parser.error("--region-origin and --region-edge must be given together")

    try:
        masses = _mass_sampler(args)
        if args.distribution == "sphere":
            bodies = uniform_sphere(
                args.bodies,
                radius=args.extent,
                masses=masses,
                velocity_dispersion=args.velocity_dispersion,
                rng=args.seed,
            )
        else:
            bodies = uniform_cube(
                args.bodies,
                edge=args.extent,
                masses=masses,
                velocity_dispersion=args.velocity_dispersion,
                rng=args.seed,
            )

        region = None
        if args.region_origin is not None:
            region = (tuple(args.region_origin), args.region_edge)

        with Simulation(
            bodies=bodies,
            opening_angle=args.theta,
            region=region,
            dt=args.dt,
            steps=args.steps,
            duration=args.duration,
            max_workers=args.workers,
            gravitational_constant=args.gravitational_constant,
            margin=args.margin,
            output_dir=args.output_dir,
            checkpoint=args.checkpoint,
            log_interval=args.log_interval,
        ) as sim:
            sim.run()
            stats = summary(sim.bodies, args.gravitational_constant)
    except ValidationError as e:
        logger.error("%s", e)
        return 2
    except StorageError as e:
        logger.error("checkpoint store unavailable: %s", e)
        return 1

    logger.info(
        "final state: %d bodies, total mass %g, momentum (%g, %g, %g), energy %g",
        int(stats["count"]),
        stats["total_mass"],
        stats["momentum_x"],
        stats["momentum_y"],
        stats["momentum_z"],
        stats["total_energy"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
