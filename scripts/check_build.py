"""Replay a saved build against module definitions and report completion.

Usage examples:
    python -m scripts.check_build --definitions module.json --build build.json
    python -m scripts.check_build --definitions module.json --build build.json --json

The build file is either a new build::

    {"targetLevel": 3, "selections": [{"id": "a", "source": "destiny"}],
     "attributes": {...}, "inventory": [...], "info": {"name": "..."}}

or a level-up of an existing one, marked by "originalLevel"; its
"selections" are the committed ones and "newSelections" are replayed on
top after the target level is raised.

Exit status is 0 when the build is complete and 1 otherwise.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from buildsmith.engine.build_config import BuildConfig
from buildsmith.engine.build_engine import BuildEngine
from buildsmith.models.constants import ATTRIBUTES, INFO, INVENTORY
from buildsmith.parser.definition_parser import parse_definition_tree

logger = logging.getLogger(__name__)

_PAYLOAD_KEYS = ("quantity", "equipped", "selections")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _load_json(path: Path) -> dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return data


def config_from_dict(data: dict[str, Any]) -> BuildConfig:
    """BuildConfig from the optional "config" block of a definitions file."""
    cfg = BuildConfig()
    if "minLevel" in data:
        cfg.min_level = int(data["minLevel"])
    if "maxLevel" in data:
        cfg.max_level = int(data["maxLevel"])
    if "attributeNames" in data:
        cfg.attribute_names = tuple(str(name) for name in data["attributeNames"])
    if "attributeValues" in data:
        cfg.attribute_values = tuple(int(v) for v in data["attributeValues"])
    if "requireName" in data:
        cfg.require_name = bool(data["requireName"])
    return cfg


def _replay(engine: BuildEngine, selections: list[dict[str, Any]]) -> list[str]:
    """Select each entry in order; return the rejection messages."""
    rejected: list[str] = []
    for raw in selections:
        payload = {key: raw[key] for key in _PAYLOAD_KEYS if key in raw}
        changed, reason = engine.select(
            str(raw["id"]), str(raw["source"]), raw.get("groupId"), payload or None
        )
        if not changed and reason:
            rejected.append(f"{raw['id']} ({raw['source']}): {reason}")
    return rejected


def replay_build(engine: BuildEngine, build: dict[str, Any]) -> list[str]:
    """Apply a build file to a fresh engine."""
    rejected: list[str] = []
    target = build.get("targetLevel")
    if "originalLevel" in build:
        engine.populate(
            build.get("selections") or [],
            attributes=build.get("attributes"),
            inventory=build.get("inventory"),
            info=build.get("info"),
            original_level=int(build["originalLevel"]),
        )
        if target is not None:
            _changed, reason = engine.set_target_level(int(target))
            if reason:
                rejected.append(f"target level: {reason}")
        rejected.extend(_replay(engine, build.get("newSelections") or []))
        return rejected

    if target is not None:
        _changed, reason = engine.set_target_level(int(target))
        if reason:
            rejected.append(f"target level: {reason}")
    rejected.extend(_replay(engine, build.get("selections") or []))
    for name in (ATTRIBUTES, INVENTORY, INFO):
        if name in build:
            engine.set_scalar_field(name, build[name])
    return rejected


def _render_text(engine: BuildEngine, rejected: list[str]) -> str:
    state = engine.state
    lines = [
        f"mode: {state.mode.value}",
        f"target level: {state.target_level}",
        f"selections: {len(state.selections)}",
    ]
    if rejected:
        lines.append("rejected:")
        lines.extend(f"  - {msg}" for msg in rejected)
    pages = engine.relevant_pages()
    lines.append("pages:")
    for page in pages:
        lines.append(f"  {page}: {'complete' if engine.is_complete(page) else 'incomplete'}")
    report = engine.completion_report()
    if report:
        lines.append("")
        lines.append("Please complete the following:")
        lines.append(report)
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check a saved build for completeness")
    parser.add_argument("--definitions", type=Path, required=True, help="Module definitions JSON file.")
    parser.add_argument("--build", type=Path, required=True, help="Build JSON file.")
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON output.")
    parser.add_argument("--verbose", action="store_true", help="Log engine activity.")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    definitions = _load_json(args.definitions)
    build = _load_json(args.build)

    tree = parse_definition_tree(definitions)
    engine = BuildEngine.new_build(tree, config_from_dict(definitions.get("config") or {}))
    rejected = replay_build(engine, build)
    build_out, report = engine.finalize()
    complete = build_out is not None

    if args.json:
        payload = {
            "complete": complete,
            "rejected": rejected,
            "issues": [
                {"page": i.page, "level": i.level, "category": i.category, "message": i.message}
                for i in engine.validate()
            ],
            "build": build_out.to_dict() if build_out is not None else None,
            "report": report,
        }
        print(json.dumps(payload, indent=2))
    else:
        print(_render_text(engine, rejected))
    return 0 if complete else 1


if __name__ == "__main__":
    raise SystemExit(main())
