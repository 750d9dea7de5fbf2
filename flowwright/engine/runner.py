"""
FlowRunner: executes a flow graph against a browser session.

Control flow is resolved while the graph is walked, not from the static
analysis the synthesizers use:

- a branch evaluates its condition once and follows only the edges labeled
  with the result (plus unlabeled ones), then continues from its end marker
- a loop re-walks its body edges in a fresh scope per iteration, stopping at
  its end marker, then continues from the end marker and its ``next`` edges
- every other node is dispatched to an action handler

A visited set keeps any node from running twice within a scope. The first
unrecovered failure aborts the run; the returned ``RunResult`` always holds
what passed, what failed and what was never reached.

Example:
    runner = FlowRunner(graph, PlaywrightDriver(settings))
    result = await runner.run()
    print(result.status, [s.status for s in result.steps])
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from flowwright.config import RunSettings, settings as default_settings
from flowwright.core.analyzer import loop_body_targets
from flowwright.core.ir import FlowGraph, StepKind, StepNode, TRUE_LABEL, FALSE_LABEL, LOOP_EXIT_LABEL
from flowwright.core.payloads import LoopSpec, condition_spec, loop_spec
from flowwright.core.validation import validate_graph
from flowwright.driver.base import BrowserDriver
from flowwright.engine.actions import ExecutionContext, execute_action
from flowwright.engine.conditions import check_condition
from flowwright.engine.diagnostics import capture_failure_screenshot, collect_diagnostics, failing_selector
from flowwright.engine.results import RunResult, RunStatus, StepResult, StepStatus, now_ms
from flowwright.engine.telemetry import (
    NullTelemetry, PreviewStreamer, TelemetryLogHandler, TelemetrySink, RUN_UPDATE, STEP_START, safe_emit,
)
from flowwright.engine.variables import VariableStore
from flowwright.errors import ActionError, ConditionError, RunStopped

logger = logging.getLogger(__name__)


class StepFailed(Exception):
    """A step failed and has already been recorded; unwinds the walk."""

    def __init__(self, step_id: str, cause: BaseException):
        super().__init__(f"Step {step_id} failed: {cause}")
        self.step_id = step_id
        self.cause = cause


class FlowRunner:
    """
    Executes one flow graph, once, in one driver session.

    Args:
        graph: The flow to execute
        driver: Browser session; owned by the runner for the run's lifetime
        settings: Timeouts, delays, retry and loop limits (module defaults if omitted)
        variables: Initial variables, visible to ``${name}`` references
        telemetry: Sink for step-start/run-update/log/preview-frame events
        sleep: Awaitable used for every artificial delay
    """

    def __init__(
        self,
        graph: FlowGraph,
        driver: BrowserDriver,
        settings: Optional[RunSettings] = None,
        variables: Optional[Union[VariableStore, Dict[str, Any]]] = None,
        telemetry: Optional[TelemetrySink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.graph = graph
        self.driver = driver
        self.settings = settings or default_settings
        if isinstance(variables, VariableStore):
            self.variables = variables
        else:
            self.variables = VariableStore(variables)
        self.telemetry = telemetry or NullTelemetry()
        self.sleep = sleep
        self.context = ExecutionContext(driver, self.variables, self.settings, sleep=sleep)

        self.result = RunResult(flow_name=graph.name)
        self._steps: Dict[str, StepResult] = {}
        for node in graph.nodes.values():
            if node.kind == StepKind.COMMENT.value or node.is_end_marker:
                continue
            step = StepResult(step_id=node.id, kind=node.kind, label=node.label)
            self._steps[node.id] = step
            self.result.steps.append(step)

        self._stop_requested = False
        # Index and item names bound by the loops currently running
        self._loop_scopes: List[Set[str]] = []

    def stop(self) -> None:
        """Request a stop; honoured before the next step starts."""
        self._stop_requested = True

    def _check_stop(self) -> None:
        if self._stop_requested:
            raise RunStopped("Run stopped by request")

    def _abandon_running(self) -> None:
        """Steps cut short by a stop or a cancellation did not complete."""
        for step in self.result.steps:
            if step.status == StepStatus.RUNNING:
                step.status = StepStatus.PENDING

    def _publish(self) -> None:
        self.result.variables = self.variables.as_dict()
        safe_emit(self.telemetry, RUN_UPDATE, self.result.to_dict())

    async def run(self) -> RunResult:
        """
        Execute the flow and return its result.

        Raises:
            StructuralError: The graph is malformed; nothing was executed
        """
        validate_graph(self.graph)

        log_handler = TelemetryLogHandler(self.telemetry)
        package_logger = logging.getLogger("flowwright")
        package_logger.addHandler(log_handler)
        preview: Optional[PreviewStreamer] = None

        self.result.status = RunStatus.RUNNING
        self.result.started_at = now_ms()
        self._publish()
        logger.info("Starting flow '%s' (%d nodes)", self.graph.name, len(self.graph))

        try:
            await self.driver.start()
            if self.settings.preview_enabled:
                preview = PreviewStreamer(
                    self.driver, self.telemetry,
                    interval_ms=self.settings.preview_interval_ms,
                    quality=self.settings.preview_quality,
                )
                preview.start()

            entries = [n.id for n in self.graph.entry_nodes()]
            await self._walk(entries, set(), set())
            self.result.status = RunStatus.PASSED
            logger.info("Flow '%s' passed", self.graph.name)
        except RunStopped as exc:
            self._abandon_running()
            self.result.status = RunStatus.STOPPED
            self.result.error = str(exc)
            logger.info("Flow '%s' stopped", self.graph.name)
        except StepFailed as exc:
            self.result.status = RunStatus.FAILED
            self.result.error = str(exc.cause) or type(exc.cause).__name__
            logger.error("Flow '%s' failed at step %s: %s", self.graph.name, exc.step_id, exc.cause)
        except asyncio.CancelledError:
            self._abandon_running()
            self.result.status = RunStatus.STOPPED
            self.result.error = "Run cancelled"
            logger.info("Flow '%s' cancelled", self.graph.name)
            raise
        except Exception as exc:
            # Session start-up or teardown of the walk itself went wrong
            self.result.status = RunStatus.FAILED
            self.result.error = str(exc) or type(exc).__name__
            logger.error("Flow '%s' failed: %s", self.graph.name, exc)
        finally:
            if preview is not None:
                await preview.stop()
            try:
                await self.driver.close()
            except Exception as exc:
                logger.warning("Error while closing the browser session: %s", exc)
            self.result.ended_at = now_ms()
            self._publish()
            package_logger.removeHandler(log_handler)

        return self.result

    async def _walk(self, start_ids: List[str], visited: Set[str], stop_ids: Set[str]) -> None:
        """Depth-first walk from ``start_ids``, never entering ``stop_ids``."""
        stack = list(reversed(start_ids))
        while stack:
            node_id = stack.pop()
            if node_id in visited or node_id in stop_ids:
                continue
            visited.add(node_id)
            node = self.graph.nodes[node_id]

            if node.kind == StepKind.BRANCH.value:
                following = await self._run_branch(node, visited, stop_ids)
            elif node.kind == StepKind.LOOP.value:
                following = await self._run_loop(node, visited, stop_ids)
            else:
                await self._run_step(node)
                following = self.graph.successors(node_id)

            stack.extend(reversed(following))

    def _begin(self, node: StepNode) -> StepResult:
        self._check_stop()
        step = self._steps[node.id]
        step.mark_running()
        self.context.step = step
        safe_emit(self.telemetry, STEP_START, {"stepId": node.id, "kind": node.kind, "label": node.label})
        logger.info("Executing %s: %s", node.kind, node.label)
        return step

    async def _finish(self, step: StepResult) -> None:
        step.mark_finished(StepStatus.PASSED)
        self.context.step = None
        self._publish()
        if self.settings.node_delay_ms > 0:
            await self.sleep(self.settings.node_delay_ms / 1000)

    async def _fail(self, node: StepNode, step: StepResult, exc: Exception) -> StepFailed:
        logger.error("Step %s (%s) failed: %s", node.id, node.kind, exc)
        selector = failing_selector(node.payload)
        if selector:
            selector = self.variables.interpolate(selector)
        step.diagnostics = await collect_diagnostics(self.driver, self.context.target, exc, selector)
        if self.settings.capture_failure_screenshots:
            step.screenshot = await capture_failure_screenshot(self.driver, self.settings.screenshot_dir, node.id)
        step.mark_finished(StepStatus.FAILED, str(exc) or type(exc).__name__)
        self.context.step = None
        self._publish()
        return StepFailed(node.id, exc)

    async def _run_step(self, node: StepNode) -> None:
        if node.kind == StepKind.COMMENT.value or node.is_end_marker:
            return
        step = self._begin(node)
        try:
            await execute_action(self.context, node)
        except Exception as exc:
            raise await self._fail(node, step, exc) from exc
        await self._finish(step)

    async def _run_branch(self, node: StepNode, visited: Set[str], stop_ids: Set[str]) -> List[str]:
        end = self.graph.pair_of(node)
        step = self._begin(node)
        try:
            outcome = await check_condition(
                condition_spec(node), self.driver, self.context.target, self.variables,
                self.settings.action_timeout_ms,
            )
        except Exception as exc:
            raise await self._fail(node, step, exc) from exc

        step.outcome = outcome
        logger.info("Condition %s evaluated: %s", node.id, "TRUE" if outcome else "FALSE")
        await self._finish(step)

        chosen = TRUE_LABEL if outcome else FALSE_LABEL
        targets = [
            e.target_id for e in self.graph.outgoing(node.id)
            if e.branch_label == chosen or e.branch_label is None
        ]
        await self._walk(targets, visited, stop_ids | {end.id})
        return [end.id]

    async def _loop_items(self, node: StepNode, spec: LoopSpec) -> List[str]:
        if spec.selector:
            selector = self.variables.interpolate(spec.selector)
            total = await self.driver.count(self.context.target, selector)
            logger.info("Found %d elements to iterate", total)
            return [f"{selector} >> nth={i}" for i in range(total)]
        if spec.items is not None:
            return [self.variables.interpolate(item) for item in spec.item_list()]
        raise ActionError(f"forEach loop {node.id} needs a selector or items")

    async def _run_loop(self, node: StepNode, visited: Set[str], stop_ids: Set[str]) -> List[str]:
        end = self.graph.pair_of(node)
        step = self._begin(node)
        spec = loop_spec(node)
        limit = spec.limit(self.settings.max_iterations)
        body = loop_body_targets(self.graph, node, end.id)
        body_stop = stop_ids | {end.id, node.id}
        body_seen: Set[str] = set()
        iterations = 0
        limit_reached = False
        names = {spec.index_variable}
        if spec.type == "forEach":
            names.add(spec.item_variable)
        # An enclosing loop gets its own index back once this loop is done
        saved = {name: self.variables.get(name) for name in names & set().union(*self._loop_scopes)}
        self._loop_scopes.append(names)

        async def iterate() -> None:
            nonlocal iterations
            self._check_stop()
            if iterations and self.settings.loop_delay_ms > 0:
                await self.sleep(self.settings.loop_delay_ms / 1000)
            self.variables.set(spec.index_variable, iterations)
            scope: Set[str] = set()
            try:
                await self._walk(body, scope, body_stop)
            finally:
                body_seen.update(scope)
            iterations += 1

        try:
            if spec.type == "count":
                logger.info("Executing loop %s %d times", node.id, spec.count)
                limit_reached = spec.count > limit
                for _ in range(min(spec.count, limit)):
                    await iterate()
            elif spec.type == "forEach":
                items = await self._loop_items(node, spec)
                limit_reached = len(items) > limit
                for item in items[:limit]:
                    self.variables.set(spec.item_variable, item)
                    await iterate()
            else:
                if spec.condition is None:
                    raise ConditionError(f"while loop {node.id} has no condition")
                while True:
                    if iterations >= limit:
                        limit_reached = True
                        break
                    holds = await check_condition(
                        spec.condition, self.driver, self.context.target, self.variables,
                        self.settings.action_timeout_ms,
                    )
                    if not holds:
                        logger.info("While loop condition is false, exiting")
                        break
                    await iterate()
        except StepFailed:
            step.outcome = iterations
            step.mark_finished(StepStatus.FAILED, f"Loop body failed in iteration {iterations + 1}")
            self.context.step = None
            raise
        except RunStopped:
            step.outcome = iterations
            raise
        except Exception as exc:
            step.outcome = iterations
            raise await self._fail(node, step, exc) from exc
        finally:
            self._loop_scopes.pop()

        for name, value in saved.items():
            self.variables.set(name, value)
        if limit_reached:
            logger.warning("Loop %s reached maximum iterations limit (%d)", node.id, limit)
        logger.info("Loop %s completed after %d iterations", node.id, iterations)
        step.outcome = iterations
        visited.update(body_seen)
        await self._finish(step)
        return [end.id] + self.graph.successors(node.id, labels=[LOOP_EXIT_LABEL])


async def run_flow(
    graph: FlowGraph,
    driver: BrowserDriver,
    settings: Optional[RunSettings] = None,
    variables: Optional[Dict[str, Any]] = None,
    telemetry: Optional[TelemetrySink] = None,
) -> RunResult:
    """Run ``graph`` once with a fresh runner."""
    return await FlowRunner(graph, driver, settings=settings, variables=variables, telemetry=telemetry).run()
