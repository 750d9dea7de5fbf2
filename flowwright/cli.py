"""
Command-line interface for flowwright.

Usage:
    flowwright run ./examples/login_flow.json --headed --var user=alice
    flowwright generate ./examples/login_flow.json -o ./build/
    flowwright generate ./examples/login_flow.json -o ./build/ --format typescript
    flowwright graph ./examples/login_flow.json -o ./build/
    flowwright validate ./examples/login_flow.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from flowwright.backend.graphviz import GraphvizExporter
from flowwright.backend.python import PythonExporter
from flowwright.backend.typescript import TypeScriptExporter
from flowwright.config import settings as default_settings
from flowwright.core.analyzer import analyze_structure, group_depth
from flowwright.core.ir import FlowGraph
from flowwright.core.serialization import JsonSerializer
from flowwright.core.validation import validate_graph
from flowwright.driver.playwright import PlaywrightDriver
from flowwright.engine.results import StepStatus
from flowwright.engine.runner import run_flow
from flowwright.errors import FlowwrightError, StructuralError

logger = logging.getLogger(__name__)

_STATUS_MARKS = {
    StepStatus.PASSED: "ok",
    StepStatus.FAILED: "FAIL",
    StepStatus.PENDING: "-",
    StepStatus.RUNNING: "..",
}


def load_flow(filepath: Path) -> FlowGraph:
    """Read a flow JSON file (engine format or editor export)."""
    try:
        text = filepath.read_text(encoding="utf-8")
    except OSError as e:
        raise StructuralError(f"Cannot read {filepath}: {e}") from e
    return JsonSerializer.from_json(text)


def load_variables(filepath: Optional[Path]) -> List[Dict[str, Any]]:
    """Variable list for the synthesizer: ``[{"name": ..., "description": ...}]``."""
    if filepath is None:
        return []
    data = json.loads(filepath.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("variables", [])
    return [{"name": v} if isinstance(v, str) else v for v in data]


def safe_name(name: str) -> str:
    """Sanitize a flow name for use as a filename."""
    name = name.lower().replace(" ", "_").replace("/", "_")
    name = "".join(c for c in name if c.isalnum() or c == "_")
    return name or "flow"


def export_flow(
    flow: FlowGraph,
    output_path: Path,
    format: str,
    variables: Optional[List[Dict[str, Any]]] = None,
) -> Tuple[Path, List[str]]:
    """Export a flow to the specified format; returns the file written and any warnings."""
    warnings: List[str] = []
    name = safe_name(flow.name)

    if format == "python":
        synth = PythonExporter.synthesizer(variables, max_iterations=default_settings.max_iterations)
        content = synth.synthesize(flow)
        warnings = synth.warnings
        filename = f"test_{name}.py"
    elif format == "typescript":
        synth = TypeScriptExporter.synthesizer(variables, max_iterations=default_settings.max_iterations)
        content = synth.synthesize(flow)
        warnings = synth.warnings
        filename = f"{name}.spec.ts"
    elif format == "graphviz" or format == "dot":
        content = GraphvizExporter.to_dot(flow)
        filename = f"{name}.dot"
    elif format == "json":
        content = JsonSerializer.to_json(flow)
        filename = f"{name}.json"
    else:
        raise ValueError(f"Unknown format: {format}. Use: python, typescript, graphviz, json")

    output_file = output_path / filename
    output_file.write_text(content, encoding="utf-8")
    return output_file, warnings


def _parse_vars(pairs: List[str]) -> Dict[str, str]:
    variables = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Expected NAME=VALUE, got '{pair}'")
        variables[name.strip()] = value
    return variables


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: Dict[str, Any] = {}
    if args.headed:
        overrides["headless"] = False
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.browser:
        overrides["browser"] = args.browser
    run_settings = default_settings.model_copy(update=overrides)

    flow = load_flow(args.input)
    driver = PlaywrightDriver(run_settings)
    result = asyncio.run(run_flow(flow, driver, settings=run_settings, variables=_parse_vars(args.var)))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        for step in result.steps:
            line = f"  [{_STATUS_MARKS.get(step.status, '?'):>4}] {step.step_id} {step.kind}"
            if step.error:
                line += f": {step.error}"
            print(line)
        print(f"{result.flow_name}: {result.status.value} ({result.duration_ms or 0} ms)")
    return 0 if result.passed else 1


def _cmd_generate(args: argparse.Namespace) -> int:
    flow = load_flow(args.input)
    args.output.mkdir(parents=True, exist_ok=True)
    output_file, warnings = export_flow(flow, args.output, args.format, load_variables(args.variables))
    for warning in warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    print(f"{output_file}")
    return 0


def _cmd_graph(args: argparse.Namespace) -> int:
    flow = load_flow(args.input)
    args.output.mkdir(parents=True, exist_ok=True)
    output_file, _ = export_flow(flow, args.output, "graphviz")
    print(f"{output_file}")
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    flow = validate_graph(load_flow(args.input))
    structure = analyze_structure(flow)
    print(f"Flow \"{flow.name}\": {len(flow.nodes)} nodes, {len(flow.edges)} edges")
    print(f"  groups: {len(structure.groups)} (max depth {group_depth(structure.groups)})")
    for group in structure.groups:
        print(f"    {group.kind.value} {group.start.id}..{group.end.id}: {len(group.inner_nodes)} inner steps")
    print(f"  frame contexts: {len(structure.sub_contexts)}")
    return 0


def main(argv: List[str] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="flowwright",
        description="Run browser-automation flows or generate Playwright code from them.",
        epilog="Example: flowwright generate ./examples/login_flow.json -o ./build/"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Logging level (default: {default_settings.log_level})"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute a flow in a live browser")
    run.add_argument("input", type=Path, help="Flow JSON file")
    run.add_argument("--json", action="store_true", help="Print the run result as JSON")
    run.add_argument("--var", action="append", default=[], metavar="NAME=VALUE", help="Initial variable")
    run.add_argument("--headed", action="store_true", help="Show the browser window")
    run.add_argument("--base-url", help="Base URL for relative navigate steps")
    run.add_argument("--browser", choices=["chromium", "firefox", "webkit"], help="Browser engine")
    run.set_defaults(handler=_cmd_run)

    generate = subparsers.add_parser("generate", help="Generate Playwright test code")
    generate.add_argument("input", type=Path, help="Flow JSON file")
    generate.add_argument(
        "-o", "--output",
        type=Path,
        default=Path("."),
        help="Output directory (default: current directory)"
    )
    generate.add_argument(
        "-f", "--format",
        choices=["python", "typescript"],
        default="python",
        help="Target language (default: python)"
    )
    generate.add_argument("--variables", type=Path, help="JSON file with the declared variables")
    generate.set_defaults(handler=_cmd_generate)

    graph = subparsers.add_parser("graph", help="Write the flow structure as Graphviz DOT source")
    graph.add_argument("input", type=Path, help="Flow JSON file")
    graph.add_argument(
        "-o", "--output",
        type=Path,
        default=Path("."),
        help="Output directory (default: current directory)"
    )
    graph.set_defaults(handler=_cmd_graph)

    validate = subparsers.add_parser("validate", help="Check a flow and summarise its structure")
    validate.add_argument("input", type=Path, help="Flow JSON file")
    validate.set_defaults(handler=_cmd_validate)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=(args.log_level or default_settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Validate input file
    if not args.input.exists():
        print(f"Error: File not found: {args.input}", file=sys.stderr)
        return 1

    if not args.input.is_file():
        print(f"Error: Not a file: {args.input}", file=sys.stderr)
        return 1

    try:
        return args.handler(args)
    except (FlowwrightError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
