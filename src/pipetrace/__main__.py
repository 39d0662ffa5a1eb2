"""Command-line interface.

Run:
    python -m pipetrace show project.h5
"""
from __future__ import annotations

import argparse
import csv
import logging
import sys
from typing import Optional, Sequence

from pipetrace.config import APP_NAME, APP_VERSION
from pipetrace.controller.reconstruction import PathReconstructor
from pipetrace.logging_config import setup_logging
from pipetrace.model.errors import ProjectFileError
from pipetrace.model.io import IOManager
from pipetrace.model.state import ProjectState
from pipetrace.utils import format_distance


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.1f}"


def _cmd_show(args: argparse.Namespace) -> int:
    state = ProjectState()
    try:
        IOManager.load_project(state, args.project)
    except (ProjectFileError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    points = state.route.points
    segments = PathReconstructor().segments(points)
    positions = PathReconstructor().reconstruct(points)

    print(f"### {state.project_name} ({len(points)} points)")
    writer = csv.writer(sys.stdout, lineterminator="\n")
    writer.writerow(["id", "memo", "distance_to_next", "heading", "elevation", "source", "level", "x", "y", "z", "mode"])
    for i, p in enumerate(points):
        mode = segments[i].mode.value if i < len(segments) else ""
        x, y, z = positions[i]
        writer.writerow([
            p.id,
            p.memo,
            _fmt(p.distance_to_next),
            _fmt(p.heading),
            _fmt(p.elevation),
            p.direction_source.value if p.direction_source else "",
            int(p.sensor_level) if p.sensor_level else "",
            f"{x:.3f}",
            f"{y:.3f}",
            f"{z:.3f}",
            mode,
        ])
    print()
    print(f"total_length={format_distance(state.route.get_total_length())}")
    assumed = sum(1 for s in segments if s.distance_assumed)
    if assumed:
        print(f"unmeasured_segments={assumed}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pipetrace", description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="print points and reconstructed positions")
    show.add_argument("project", help="project file (.h5)")
    show.set_defaults(func=_cmd_show)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.WARNING)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
