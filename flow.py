#!/usr/bin/env python
import sys
import json
import argparse
from pathlib import Path

from aiflow import (
    AIFlowError,
    Router,
    SimulatedAgentExecutor,
    build_auto_context,
    evaluate_with_trace,
    load_project,
    validate_project,
)
from aiflow.config import EngineSettings, configure_logging
from aiflow.diagnostics import render_trace
from aiflow.graph_engine import RoutingGraph
from aiflow.types import RunOptions


def _load_json_arg(value, default=None):
    """Accept inline JSON or ``@path/to/file.json``."""
    if value is None:
        return default
    if value.startswith("@"):
        return json.loads(Path(value[1:]).read_text(encoding="utf-8"))
    return json.loads(value)


def _find_project(target: str) -> Path:
    potential_paths = [
        Path(target),
        Path(f"{target}.json"),
        Path(target) / "project.json",
    ]
    for p in potential_paths:
        if p.exists() and p.is_file():
            return p
    raise FileNotFoundError(
        f"Could not find project for '{target}'. Checked: " + ", ".join(str(p) for p in potential_paths)
    )


def cmd_run(args) -> int:
    project = load_project(json.loads(_find_project(args.project).read_text(encoding="utf-8")))
    settings = EngineSettings.from_env()
    executor = SimulatedAgentExecutor(_load_json_arg(args.outputs, {})) if args.simulate else None
    router = Router(project, executor=executor, settings=settings)
    options = RunOptions(
        initial_context=_load_json_arg(args.context, {}),
        outputs_by_agent={} if args.simulate else _load_json_arg(args.outputs, {}),
        max_steps=args.max_steps,
        record_trace=args.trace,
    )
    result = router.run(options)
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
    return 0


def cmd_eval(args) -> int:
    scope = {
        "context": _load_json_arg(args.context, {}),
        "output": _load_json_arg(args.output, None),
        "agentId": args.agent,
    }
    if isinstance(scope["context"], dict) and "user" in scope["context"]:
        scope["user"] = scope["context"]["user"]
    trace = evaluate_with_trace(args.expression, scope)
    if args.json:
        print(json.dumps(trace.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(render_trace(trace))
    return 0 if trace.result is not None else 2


def cmd_sample(args) -> int:
    print(json.dumps(build_auto_context(args.expression), indent=2, ensure_ascii=False))
    return 0


def cmd_validate(args) -> int:
    project = load_project(json.loads(_find_project(args.project).read_text(encoding="utf-8")))
    issues = validate_project(project)
    for i in issues:
        print(f"{i.level.value.upper():7} {i.code}: {i.message}")
    if not issues:
        print("No issues found.")
    if args.graph:
        print(json.dumps(RoutingGraph(project).to_dict(), indent=2, ensure_ascii=False, default=str))
    return 1 if any(i.level.value == "error" for i in issues) else 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="AIFlow CLI - run and debug multi-agent workflows")
    parser.add_argument("--log-level", default=None, help="Log level (default: AIFLOW_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run a project JSON file")
    run_parser.add_argument("project", help="Path to the project JSON (or its directory)")
    run_parser.add_argument("--context", help="Initial context as JSON or @file")
    run_parser.add_argument("--outputs", help="Per-agent outputs as JSON or @file")
    run_parser.add_argument("--max-steps", type=int, default=None, help="Step bound (default 50)")
    run_parser.add_argument("--simulate", action="store_true", help="Run agents with the simulated executor")
    run_parser.add_argument("--trace", action="store_true", default=None, help="Record __trace in the final context")

    eval_parser = subparsers.add_parser("eval", help="Evaluate a condition and print its trace")
    eval_parser.add_argument("expression")
    eval_parser.add_argument("--context", help="Global context as JSON or @file")
    eval_parser.add_argument("--output", help="Current agent output as JSON or @file")
    eval_parser.add_argument("--agent", default=None, help="Current agent id")
    eval_parser.add_argument("--json", action="store_true", help="Print the trace as JSON")

    sample_parser = subparsers.add_parser("sample", help="Print a sample context for a condition")
    sample_parser.add_argument("expression")

    validate_parser = subparsers.add_parser("validate", help="Validate a project JSON file")
    validate_parser.add_argument("project")
    validate_parser.add_argument("--graph", action="store_true", help="Also print the routing graph as JSON")

    args = parser.parse_args(argv)
    configure_logging(args.log_level or EngineSettings.from_env().log_level)

    handlers = {"run": cmd_run, "eval": cmd_eval, "sample": cmd_sample, "validate": cmd_validate}
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except (AIFlowError, FileNotFoundError, ValueError) as e:
        print(f"[Error] {str(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
