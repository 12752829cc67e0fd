from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Dict

from kea_images import __version__
from kea_images.catalog.build_catalog import BuildCatalog
from kea_images.core.config.errors import ConfigError
from kea_images.core.config.loader import apply_overrides, load_config
from kea_images.core.engine.planner import plan_execution
from kea_images.core.exceptions import KeaBuildException
from kea_images.graph import build_stages, terminal_images


def _print_err(message: str) -> None:
    sys.stderr.write(message.rstrip() + "\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kea-images", add_help=True)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=str, default=None, help="Local YAML/JSON override file (deep-merged over defaults).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build and export every image for a source release")
    build.add_argument("--version", dest="source_version", required=True, help="Source release version, e.g. 2.4.1")
    build.add_argument("--work-dir", type=str, default=None, help="Stage snapshot directory (default: build.work_dir).")
    build.add_argument("--output-dir", type=str, default=None, help="Exported image directory (default: build.output_dir).")
    build.add_argument("--mirror-dir", type=str, default=None, help="Local directory holding archive, signature, publisher key and base rootfs.")
    build.add_argument("--jobs", "-j", type=int, default=None, help="Parallel make jobs (default: CPU count).")
    build.add_argument("--max-workers", type=int, default=None, help="Stages run concurrently on independent branches.")
    build.add_argument("--fail-fast", action="store_true", help="Stop at the first failed stage.")
    build.add_argument("--load", action="store_true", help="Import exported images into the local container daemon.")

    sub.add_parser("plan", help="Print the stage execution order")
    sub.add_parser("plugins", help="Print resolved hook sets per full variant")

    return parser


def _load(args: argparse.Namespace) -> Dict[str, Any]:
    if args.config is not None and not Path(args.config).is_file():
        raise ConfigError(f"config file not found: {args.config}")
    return load_config(local_path=args.config)


def _cmd_build(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    from kea_images.builder import run_build

    overrides: Dict[str, Any] = {}
    if args.jobs is not None:
        overrides.setdefault("compile", {})["jobs"] = args.jobs
    if args.max_workers is not None:
        overrides.setdefault("engine", {})["max_workers"] = args.max_workers
    if args.fail_fast:
        overrides.setdefault("engine", {})["fail_fast"] = True
    if args.mirror_dir is not None:
        overrides.setdefault("source", {})["mirror_dir"] = args.mirror_dir
    config = apply_overrides(config, overrides)

    outcome = run_build(
        version=args.source_version,
        config=config,
        work_dir=Path(args.work_dir) if args.work_dir else None,
        output_dir=Path(args.output_dir) if args.output_dir else None,
        mirror_dir=Path(args.mirror_dir) if args.mirror_dir else None,
        load=bool(args.load),
    )

    for name in sorted(outcome.images):
        info = outcome.images[name]
        print(f"{name}\t{info['tar_sha256']}\t{info['tar_path']}")
    missing = sorted(set(outcome.expected_images) - set(outcome.images))
    for name in missing:
        _print_err(f"not built: {name}")
    for stage_id, r in outcome.run.stages.items():
        error = r.payload.get("error")
        if error:
            _print_err(f"{stage_id}: {error.get('type')}: {error.get('message')}")
            if error.get("hint"):
                _print_err(f"  hint: {error['hint']}")
    print(f"manifest: {outcome.manifest_path}")
    return 0 if outcome.ok else 1


def _cmd_plan(config: Dict[str, Any]) -> int:
    catalog = BuildCatalog.from_config(config)
    stages = build_stages(catalog, config)
    images = terminal_images(stages)
    for stage in plan_execution(stages):
        deps = ", ".join(stage.depends_on) or "-"
        suffix = f"  -> {images[stage.id]}" if stage.id in images else ""
        print(f"{stage.id}\t[{stage.kind.value}]\t<- {deps}{suffix}")
    return 0


def _cmd_plugins(config: Dict[str, Any]) -> int:
    catalog = BuildCatalog.from_config(config)
    for spec in catalog.plugin_services():
        selection = catalog.resolve_plugins(spec.name)
        print(f"{spec.full_image}:")
        for module in selection.selected:
            print(f"  {module}")
        for module in selection.excluded:
            print(f"  {module} (excluded: depends on companion module)")
    inspection_only = sorted(set(catalog.modules) - catalog.allow_listed())
    print("inspection only:")
    for module in inspection_only:
        print(f"  {module}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _load(args)
        if args.command == "build":
            return _cmd_build(args, config)
        if args.command == "plan":
            return _cmd_plan(config)
        if args.command == "plugins":
            return _cmd_plugins(config)
    except (ConfigError, KeaBuildException) as e:
        _print_err(f"error: {e}")
        return 2

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
