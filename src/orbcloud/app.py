from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
from PySide6 import QtCore

from orbcloud.config import load_builtin_profile, load_config
from orbcloud.controller import OrbitalCloudController
from orbcloud.logging_config import setup_logging
from orbcloud.meshes import cloud_polydata, overlay_meshes
from orbcloud.quantum import InvalidQuantumState, QuantumState, orbital_label

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orbcloud",
        description="Sample an atomic-orbital probability cloud and fit its overlay shape.",
    )
    parser.add_argument("n", type=int, help="Principal quantum number (n >= 1).")
    parser.add_argument("l", type=int, help="Angular momentum quantum number (0 <= l < n).")
    parser.add_argument("m", type=int, help="Magnetic quantum number (|m| <= l).")
    parser.add_argument("--count", type=int, default=10000, help="Number of samples to draw.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the sampling random generator.")
    parser.add_argument("--overlay", action="store_true", help="Fit and report the overlay shape.")
    parser.add_argument("--profile", default="default", help="Bundled settings profile (default, preview).")
    parser.add_argument("--config", type=Path, default=None, help="JSON profile with sampler/overlay settings.")
    parser.add_argument("--output", type=Path, default=None, help="Save the cloud (and overlay meshes) as .vtp.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    return parser


def run(args: argparse.Namespace) -> int:
    try:
        state = QuantumState.from_values(args.n, args.l, args.m)
    except InvalidQuantumState as exc:
        logger.error("%s", exc)
        return 2
    if args.count < 0:
        logger.error("Sample count must be non-negative, got %d", args.count)
        return 2

    if args.config is not None:
        sampler_config, overlay_config = load_config(args.config)
    else:
        sampler_config, overlay_config = load_builtin_profile(args.profile)

    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv[:1])
    controller = OrbitalCloudController(
        sampler_config,
        overlay_config,
        rng=np.random.default_rng(args.seed),
        parent=app,
    )
    loop = QtCore.QEventLoop()
    result: dict = {"overlay": None}
    wants_overlay = args.overlay and state.l <= 2

    def on_cloud_ready(buffer: np.ndarray, count: int) -> None:
        result["points"] = np.array(buffer.reshape(-1, 3)[:count])
        if not wants_overlay or count == 0:
            loop.quit()

    def on_overlay_changed(descriptor) -> None:
        if descriptor is not None:
            result["overlay"] = descriptor
            loop.quit()

    controller.cloud_ready.connect(on_cloud_ready)
    controller.overlay_changed.connect(on_overlay_changed)
    controller.set_overlay_enabled(args.overlay)
    controller.request(state.n, state.l, state.m, args.count)
    loop.exec()

    points = result.get("points", np.empty((0, 3)))
    logger.info("%s: %d samples", orbital_label(state), len(points))
    descriptor = result["overlay"]
    if descriptor is not None:
        logger.info("Overlay %s: %s", descriptor.kind, descriptor)
    elif args.overlay:
        logger.info("No overlay shape for %s", orbital_label(state))

    if args.output is not None:
        output = args.output.with_suffix(".vtp")
        output.parent.mkdir(parents=True, exist_ok=True)
        cloud_polydata(points).save(output)
        logger.info("Saved cloud to %s", output)
        for name, mesh in overlay_meshes(descriptor, overlay_config):
            mesh_path = output.with_name(f"{output.stem}_{name}.vtp")
            mesh.save(mesh_path)
            logger.info("Saved %s mesh to %s", name, mesh_path)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
