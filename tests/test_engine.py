"""
Tests for the flow interpreter, driven through an in-memory FakeDriver.
"""

import asyncio
import base64
import logging
from pathlib import Path

import pytest

from conftest import FakeDriver, FakeElement, FakeTimeout
from flowwright.core.ir import StepNode
from flowwright.engine import (
    CallbackTelemetry, FlowRunner, RecordingTelemetry, RunStatus, StepStatus, run_flow,
)
from flowwright.engine.actions import resolve_url
from flowwright.errors import StructuralError
from flowwright.frontend import FlowBuilder


def _clicks(driver):
    return [(target, selector) for _, target, selector, *_ in driver.called("click")]


class TestBasicRuns:
    """Straight-line flows."""

    @pytest.mark.asyncio
    async def test_navigate_and_assert(self, driver, run_settings):
        """A navigate step followed by a passing assertion."""
        driver.pages["http://example.com"] = {"h1": FakeElement(text="Example Domain")}
        b = FlowBuilder("Smoke")
        b.step("navigate", node_id="nav", url="example.com")
        b.step("assertion", node_id="check", selector="h1", comparison="contains", expected="Example")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.status == RunStatus.PASSED
        assert result.passed
        assert [(s.step_id, s.status) for s in result.steps] == [
            ("nav", StepStatus.PASSED),
            ("check", StepStatus.PASSED),
        ]
        assert driver.called("goto") == [("goto", "http://example.com")]
        assert driver.started and driver.closed
        assert result.duration_ms is not None

    @pytest.mark.asyncio
    async def test_checkout_flow(self, checkout_flow, run_settings):
        """The full checkout flow against a fake shop."""
        driver = FakeDriver()
        driver.pages["https://shop.example.com"] = {
            "#cookie-banner": FakeElement(),
            "#cookie-banner .accept": FakeElement(),
            "input[name=q]": FakeElement(),
            ".result": FakeElement(count=2),
            "#cart-total": FakeElement(text="$42"),
            "#checkout": FakeElement(),
            "h1": FakeElement(text="Thank you for your order"),
        }
        driver.frames["iframe#payment"] = {"#card": FakeElement()}

        result = await run_flow(checkout_flow, driver, settings=run_settings, variables={"product": "lamp"})

        assert result.status == RunStatus.PASSED, result.error
        # Comments and end markers have no step record
        assert len(result.steps) == 18
        assert result.step("done-note") is None
        assert result.step("each-result").outcome == 2
        assert result.step("out-of-stock").runs == 2
        assert result.step("out-of-stock").outcome is False
        assert result.step("dismiss-toast").status == StepStatus.PENDING
        assert result.step("wait-payment").outcome == 0
        assert result.step("wait-spinner").status == StepStatus.PENDING

        assert driver.values["input[name=q]"] == "lamp"
        assert ("fill", "frame1", "#card", "4242 4242 4242 4242") in driver.calls
        assert _clicks(driver) == [
            ("page", "#cookie-banner .accept"),
            ("page", ".result >> nth=0"),
            ("page", ".result >> nth=1"),
            ("page", "#checkout"),
        ]
        assert result.variables == {
            "product": "lamp",
            "resultCount": 2,
            "index": 1,
            "item": ".result >> nth=1",
            "total": "$42",
        }

    @pytest.mark.asyncio
    async def test_click_variants(self, run_settings):
        driver = FakeDriver({"#item": FakeElement()})
        b = FlowBuilder("Clicks")
        b.step("doubleClick", selector="#item")
        b.step("rightClick", selector="#item")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert [c[3:] for c in driver.called("click")] == [("left", 2), ("right", 1)]

    @pytest.mark.asyncio
    async def test_variables_flow_between_steps(self, run_settings):
        """Get-value results are interpolated into later payloads."""
        driver = FakeDriver({"#user": FakeElement(text="alice"), "#greeting": FakeElement()})
        b = FlowBuilder("Greeting")
        b.step("getText", selector="#user", variableName="user")
        b.step("fill", selector="#greeting", value="Hi ${user}, from ${team} ${unknown}")

        result = await run_flow(b.build(), driver, settings=run_settings, variables={"team": "QA"})

        assert result.passed
        assert driver.values["#greeting"] == "Hi alice, from QA ${unknown}"
        assert result.variables["user"] == "alice"

    @pytest.mark.asyncio
    async def test_local_storage_and_cookies(self, run_settings):
        driver = FakeDriver(url="https://app.example.com/")
        b = FlowBuilder("Storage")
        b.step("localStorage", storageAction="set", key="token", value="abc")
        b.step("localStorage", storageAction="get", key="token", variableName="token")
        b.step("setCookie", name="session", value="${token}")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert result.variables["token"] == "abc"
        assert driver.cookies == [
            {"name": "session", "value": "abc", "domain": None, "path": "/", "url": "https://app.example.com/"},
        ]

    @pytest.mark.asyncio
    async def test_screenshot_step(self, driver, run_settings, tmp_path):
        path = tmp_path / "shots" / "home.png"
        b = FlowBuilder("Shot")
        b.step("screenshot", node_id="shot", path=str(path))

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert path.exists()
        assert result.step("shot").screenshot == str(path)

    @pytest.mark.asyncio
    async def test_custom_code_try_catch(self, driver, run_settings):
        """wrapInTryCatch turns a script error into a log line."""
        driver.evaluations["boom()"] = RuntimeError("ReferenceError: boom is not defined")
        driver.evaluations["document.title"] = "Home"
        b = FlowBuilder("Scripts")
        b.step("customCode", node_id="title", code="document.title", variableName="pageTitle")
        b.step("customCode", node_id="guarded", code="boom()", wrapInTryCatch=True)
        b.step("customCode", node_id="unguarded", code="boom()")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.status == RunStatus.FAILED
        assert result.variables["pageTitle"] == "Home"
        assert result.step("guarded").status == StepStatus.PASSED
        assert result.step("unguarded").status == StepStatus.FAILED
        assert "boom is not defined" in result.step("unguarded").error

    @pytest.mark.asyncio
    async def test_pacing_delays(self, driver, run_settings, sleeps):
        """Node delays follow every executed step; waits use the same sleep."""
        settings = run_settings.model_copy(update={"node_delay_ms": 200})
        b = FlowBuilder("Paced")
        b.step("wait", timeout=1500)
        b.step("keyboard", key="Tab")

        result = await FlowRunner(b.build(), driver, settings=settings, sleep=sleeps).run()

        assert result.passed
        assert sleeps.calls == [1.5, 0.2, 0.2]

    def test_resolve_url(self):
        assert resolve_url("https://a.test/x") == "https://a.test/x"
        assert resolve_url("10.0.0.5:8080") == "http://10.0.0.5:8080"
        assert resolve_url("login", "https://a.test/app/") == "https://a.test/app/login"
        assert resolve_url("a.test") == "http://a.test"


class TestBranches:
    """Branch steps choose one arm at run time."""

    @staticmethod
    def _banner_flow():
        b = FlowBuilder("Banner")
        b.step("navigate", node_id="nav", url="http://site.test")
        with b.branch(node_id="has-banner", selector="#banner") as banner:
            with banner.when_true():
                b.step("click", node_id="P", selector="#banner .close")
        b.step("click", node_id="after", selector="#go")
        return b.build()

    @pytest.mark.asyncio
    async def test_false_branch_leaves_arm_pending(self, run_settings):
        """The untaken arm is never executed and stays pending."""
        driver = FakeDriver()
        driver.pages["http://site.test"] = {"#go": FakeElement()}

        result = await run_flow(self._banner_flow(), driver, settings=run_settings)

        assert result.passed
        assert result.step("has-banner").outcome is False
        assert result.step("P").status == StepStatus.PENDING
        assert result.step("after").status == StepStatus.PASSED
        assert _clicks(driver) == [("page", "#go")]

    @pytest.mark.asyncio
    async def test_true_branch_runs_arm(self, run_settings):
        driver = FakeDriver()
        driver.pages["http://site.test"] = {
            "#go": FakeElement(), "#banner": FakeElement(), "#banner .close": FakeElement(),
        }

        result = await run_flow(self._banner_flow(), driver, settings=run_settings)

        assert result.step("has-banner").outcome is True
        assert _clicks(driver) == [("page", "#banner .close"), ("page", "#go")]

    @staticmethod
    def _title_flow():
        b = FlowBuilder("Title check")
        b.step("getText", node_id="read-title", selector="h1", variableName="title")
        with b.branch(node_id="is-x", type="custom", expression="${title} === 'X'") as check:
            with check.when_true():
                b.step("click", node_id="yes", selector="#yes")
            with check.when_false():
                b.step("click", node_id="no", selector="#no")
        return b.build()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title, taken, skipped", [("X", "yes", "no"), ("Y", "no", "yes")])
    async def test_custom_expression_on_stored_text(self, run_settings, title, taken, skipped):
        """A getText result drives a custom expression."""
        driver = FakeDriver({"h1": FakeElement(text=title), "#yes": FakeElement(), "#no": FakeElement()})

        result = await run_flow(self._title_flow(), driver, settings=run_settings)

        assert result.passed
        assert result.step(taken).status == StepStatus.PASSED
        assert result.step(skipped).status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_variable_fails_branch(self, driver, run_settings):
        b = FlowBuilder("Broken expression")
        with b.branch(node_id="check", type="custom", expression="${nope} > 1") as check:
            with check.when_true():
                b.step("click", node_id="inside", selector="#a")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.status == RunStatus.FAILED
        assert result.step("check").status == StepStatus.FAILED
        assert "Unknown variable 'nope'" in result.error

    @pytest.mark.asyncio
    async def test_url_and_text_conditions(self, run_settings):
        driver = FakeDriver({"#msg": FakeElement(text="  Welcome  ")}, url="https://app.test/dashboard?tab=1")
        b = FlowBuilder("Conditions")
        with b.branch(node_id="on-dashboard", type="url", value="/dashboard") as url_check:
            with url_check.when_true():
                b.step("getCount", selector="#msg", variableName="messages")
        with b.branch(node_id="welcomed", selector="#msg", comparison="equals", value="Welcome"):
            pass
        with b.branch(node_id="greeting", selector="#missing", comparison="contains", value="Hi"):
            pass

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert result.step("on-dashboard").outcome is True
        assert result.step("welcomed").outcome is True
        assert result.step("greeting").outcome is False
        assert result.variables["messages"] == 1


class TestLoops:
    """Count, forEach and while loops with their iteration limits."""

    @pytest.mark.asyncio
    async def test_count_loop_capped_by_max_iterations(self, run_settings, caplog):
        """count=3 with maxIterations=1 runs once and warns."""
        driver = FakeDriver({"#next": FakeElement()})
        b = FlowBuilder("Capped")
        with b.loop(node_id="pages", type="count", count=3, maxIterations=1):
            b.step("click", node_id="next", selector="#next")

        with caplog.at_level(logging.WARNING):
            result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert result.step("pages").outcome == 1
        assert len(driver.called("click")) == 1
        assert "Loop pages reached maximum iterations limit (1)" in caplog.text

    @pytest.mark.asyncio
    async def test_count_loop_uses_settings_limit(self, run_settings):
        driver = FakeDriver({"#next": FakeElement()})
        settings = run_settings.model_copy(update={"max_iterations": 2})
        b = FlowBuilder("Default cap")
        with b.loop(node_id="pages", type="count", count=5):
            b.step("click", selector="#next")

        result = await run_flow(b.build(), driver, settings=settings)

        assert result.step("pages").outcome == 2

    @pytest.mark.asyncio
    async def test_loop_delay_between_iterations(self, run_settings, sleeps):
        driver = FakeDriver({"#next": FakeElement()})
        settings = run_settings.model_copy(update={"loop_delay_ms": 100})
        b = FlowBuilder("Slow loop")
        with b.loop(type="count", count=3):
            b.step("click", selector="#next")

        await FlowRunner(b.build(), driver, settings=settings, sleep=sleeps).run()

        assert sleeps.calls == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_for_each_items(self, run_settings):
        """A comma-separated item list binds each item in turn."""
        driver = FakeDriver({"#tag": FakeElement()})
        b = FlowBuilder("Tags")
        with b.loop(node_id="tags", type="forEach", items="red, green , blue", itemVariable="tag"):
            b.step("fill", selector="#tag", value="${tag}-${index}")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.step("tags").outcome == 3
        assert [c[3] for c in driver.called("fill")] == ["red-0", "green-1", "blue-2"]

    @pytest.mark.asyncio
    async def test_nested_loop_restores_outer_index(self, run_settings):
        """After an inner loop finishes, the outer body sees its own ${index} again."""
        driver = FakeDriver({"#cell": FakeElement(), "#row": FakeElement()})
        b = FlowBuilder("Grid")
        with b.loop(node_id="rows", type="count", count=2):
            with b.loop(node_id="cells", type="count", count=3):
                b.step("click", selector="#cell")
            b.step("fill", selector="#row", value="row ${index}")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.step("rows").outcome == 2
        assert result.step("cells").outcome == 3
        assert len(driver.called("click")) == 6
        assert [c[3] for c in driver.called("fill")] == ["row 0", "row 1"]
        assert result.variables["index"] == 1

    @pytest.mark.asyncio
    async def test_for_each_without_source_fails(self, driver, run_settings):
        b = FlowBuilder("Nothing to iterate")
        with b.loop(node_id="each", type="forEach"):
            b.step("click", selector="#a")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.step("each").status == StepStatus.FAILED
        assert "needs a selector or items" in result.error

    @pytest.mark.asyncio
    async def test_while_loop_stops_at_limit(self, run_settings, caplog):
        driver = FakeDriver({"#more": FakeElement()})
        b = FlowBuilder("Forever")
        with b.loop(node_id="spin", type="while", condition="true", maxIterations=4):
            b.step("click", selector="#more")

        with caplog.at_level(logging.WARNING):
            result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert result.step("spin").outcome == 4
        assert "Loop spin reached maximum iterations limit (4)" in caplog.text

    @pytest.mark.asyncio
    async def test_while_loop_false_condition_skips_body(self, driver, run_settings):
        b = FlowBuilder("Never")
        with b.loop(node_id="spin", type="while", condition={"selector": ".spinner", "comparison": "visible"}):
            b.step("click", node_id="body", selector="#more")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert result.step("spin").outcome == 0
        assert result.step("body").status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_body_failure_fails_loop(self, run_settings):
        """A failing body step fails the loop and aborts the run."""
        driver = FakeDriver({"#row": FakeElement()})
        driver.fail_on["click"] = [None, FakeTimeout("Timeout 10000ms exceeded")]
        b = FlowBuilder("Rows")
        with b.loop(node_id="rows", type="count", count=3):
            b.step("click", node_id="open-row", selector="#row")
        b.step("click", node_id="after", selector="#row")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.status == RunStatus.FAILED
        assert result.step("rows").status == StepStatus.FAILED
        assert result.step("rows").error == "Loop body failed in iteration 2"
        assert result.step("rows").outcome == 1
        assert result.step("open-row").status == StepStatus.FAILED
        assert result.step("after").status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_next_edge_runs_after_loop(self, run_settings):
        driver = FakeDriver({"#a": FakeElement(), "#b": FakeElement()})
        b = FlowBuilder("Exit edge")
        with b.loop(node_id="twice", type="count", count=2) as loop:
            b.step("click", selector="#a")
        after = b.flow.add_node(StepNode(node_id="after", kind="click", payload={"selector": "#b"}))
        b.connect(loop, after, "next")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert _clicks(driver) == [("page", "#a"), ("page", "#a"), ("page", "#b")]
        assert result.step("after").runs == 1


class TestFrames:
    """Sub-context switching with frameEnter/frameExit."""

    @pytest.mark.asyncio
    async def test_steps_resolve_inside_frame(self, run_settings):
        driver = FakeDriver({"button": FakeElement()})
        driver.frames["#widget"] = {"button": FakeElement()}
        b = FlowBuilder("Widget")
        b.step("frameEnter", selector="#widget")
        b.step("click", selector="button")
        b.step("frameExit")
        b.step("click", selector="button")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert _clicks(driver) == [("frame1", "button"), ("page", "button")]

    @pytest.mark.asyncio
    async def test_second_enter_switches_frames(self, run_settings):
        """A frameEnter while inside a frame silently replaces it."""
        driver = FakeDriver()
        driver.frames["#a"] = {"button": FakeElement()}
        driver.frames["#b"] = {"button": FakeElement()}
        b = FlowBuilder("Two frames")
        b.step("frameEnter", selector="#a")
        b.step("frameEnter", selector="#b")
        b.step("click", selector="button")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.passed
        assert _clicks(driver) == [("frame2", "button")]


class TestFailures:
    """Failure records, diagnostics and retry."""

    @pytest.mark.asyncio
    async def test_missing_element_diagnostics(self, run_settings):
        """The failing step carries page and element state."""
        driver = FakeDriver(url="https://app.test/")
        b = FlowBuilder("Missing")
        b.step("click", node_id="ghost", selector="#missing")
        b.step("click", node_id="never", selector="#missing")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.status == RunStatus.FAILED
        assert "Timeout" in result.error
        step = result.step("ghost")
        assert step.status == StepStatus.FAILED
        assert step.diagnostics.error_type == "FakeTimeout"
        assert step.diagnostics.url == "https://app.test/"
        assert step.diagnostics.title == "Fake page"
        assert step.diagnostics.selector == "#missing"
        assert step.diagnostics.element_count == 0
        assert step.diagnostics.element_found is False
        assert result.step("never").status == StepStatus.PENDING
        assert driver.closed

    @pytest.mark.asyncio
    async def test_failure_screenshot(self, driver, run_settings):
        settings = run_settings.model_copy(update={"capture_failure_screenshots": True})
        b = FlowBuilder("Shot on failure")
        b.step("click", node_id="ghost", selector="#missing")

        result = await run_flow(b.build(), driver, settings=settings)

        path = Path(result.step("ghost").screenshot)
        assert path.exists()
        assert path.name.startswith("error-ghost-")

    @pytest.mark.asyncio
    async def test_assertion_failure(self, run_settings):
        driver = FakeDriver({"#banner": FakeElement(visible=False), "h1": FakeElement(text="Hello")})
        b = FlowBuilder("Assertions")
        b.step("assertion", node_id="hidden", selector="#banner", comparison="hidden")
        b.step("assertion", node_id="equal", selector="h1", comparison="equals", expected="Goodbye")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.step("hidden").status == StepStatus.PASSED
        assert result.step("equal").status == StepStatus.FAILED
        assert result.step("equal").diagnostics.error_type == "StepAssertionError"
        assert 'Expected: "Goodbye"' in result.error

    @pytest.mark.asyncio
    async def test_transient_navigation_error_is_retried(self, driver, run_settings, sleeps):
        settings = run_settings.model_copy(update={"retry_delay_ms": 250})
        driver.fail_on["goto"] = [Exception("net::ERR_CONNECTION_RESET at http://site.test")]
        b = FlowBuilder("Flaky")
        b.step("navigate", url="http://site.test")

        result = await FlowRunner(b.build(), driver, settings=settings, sleep=sleeps).run()

        assert result.passed
        assert len(driver.called("goto")) == 2
        assert sleeps.calls == [0.25]

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_attempts(self, driver, run_settings, sleeps):
        driver.fail_on["goto"] = Exception("net::ERR_NAME_NOT_RESOLVED")
        b = FlowBuilder("Down")
        b.step("navigate", url="http://down.test")

        result = await FlowRunner(b.build(), driver, settings=run_settings, sleep=sleeps).run()

        assert result.status == RunStatus.FAILED
        assert len(driver.called("goto")) == 3
        assert "ERR_NAME_NOT_RESOLVED" in result.error

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, driver, run_settings):
        driver.fail_on["goto"] = Exception("Invalid url")
        b = FlowBuilder("Bad url")
        b.step("navigate", url="http://bad.test")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.status == RunStatus.FAILED
        assert len(driver.called("goto")) == 1

    @pytest.mark.asyncio
    async def test_malformed_graph_raises_before_start(self, driver, run_settings):
        """Structural problems surface as an exception; the browser never starts."""
        b = FlowBuilder("Broken")
        b.flow.add_node(StepNode(node_id="b", kind="branch", pair_id="missing", payload={"selector": "#a"}))

        with pytest.raises(StructuralError):
            await run_flow(b.build(), driver, settings=run_settings)
        assert not driver.started

    @pytest.mark.asyncio
    async def test_driver_start_failure(self, driver, run_settings):
        driver.fail_on["start"] = RuntimeError("Executable doesn't exist")
        b = FlowBuilder("No browser")
        b.step("click", node_id="c", selector="#a")

        result = await run_flow(b.build(), driver, settings=run_settings)

        assert result.status == RunStatus.FAILED
        assert result.error == "Executable doesn't exist"
        assert result.step("c").status == StepStatus.PENDING


class TestStopping:
    """Stop requests and cancellation."""

    @staticmethod
    def _three_steps():
        b = FlowBuilder("Three")
        b.step("click", node_id="a", selector="#x")
        b.step("click", node_id="b", selector="#x")
        b.step("click", node_id="c", selector="#x")
        return b.build()

    @pytest.mark.asyncio
    async def test_stop_between_steps(self, run_settings):
        """A stop requested during a step takes effect before the next one."""
        driver = FakeDriver({"#x": FakeElement()})
        runner = None

        def on_event(event, payload):
            if event == "step-start" and payload["stepId"] == "b":
                runner.stop()

        runner = FlowRunner(self._three_steps(), driver, settings=run_settings,
                            telemetry=CallbackTelemetry(on_event))
        result = await runner.run()

        assert result.status == RunStatus.STOPPED
        assert [s.status for s in result.steps] == [StepStatus.PASSED, StepStatus.PASSED, StepStatus.PENDING]
        assert driver.closed

    @pytest.mark.asyncio
    async def test_cancellation_marks_run_stopped(self, run_settings):
        """Cancelling the run task stops it and re-raises."""
        driver = FakeDriver()
        started = asyncio.Event()

        async def blocking_sleep(seconds):
            started.set()
            await asyncio.Event().wait()

        b = FlowBuilder("Blocked")
        b.step("wait", node_id="pause", timeout=60000)
        runner = FlowRunner(b.build(), driver, settings=run_settings, sleep=blocking_sleep)

        task = asyncio.ensure_future(runner.run())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert runner.result.status == RunStatus.STOPPED
        assert runner.result.step("pause").status == StepStatus.PENDING
        assert driver.closed


class TestTelemetry:
    """Events pushed while a flow runs."""

    @pytest.mark.asyncio
    async def test_events(self, run_settings, caplog):
        driver = FakeDriver({"#a": FakeElement()})
        telemetry = RecordingTelemetry()
        b = FlowBuilder("Observed")
        b.step("navigate", node_id="nav", url="http://site.test")
        b.step("click", node_id="press", selector="#a")

        with caplog.at_level(logging.INFO, logger="flowwright"):
            result = await run_flow(b.build(), driver, settings=run_settings, telemetry=telemetry)

        assert result.passed
        assert [p["stepId"] for p in telemetry.of("step-start")] == ["nav", "press"]
        updates = telemetry.of("run-update")
        assert updates[0]["status"] == "running"
        assert updates[-1]["status"] == "passed"
        assert updates[-1]["steps"][1]["status"] == "passed"
        messages = [p["message"] for p in telemetry.of("log")]
        assert "Navigating to http://site.test" in messages

    @pytest.mark.asyncio
    async def test_broken_sink_does_not_affect_run(self, run_settings):
        driver = FakeDriver({"#a": FakeElement()})
        b = FlowBuilder("Noisy")
        b.step("click", selector="#a")

        def explode(event, payload):
            raise RuntimeError("socket closed")

        result = await run_flow(b.build(), driver, settings=run_settings, telemetry=CallbackTelemetry(explode))

        assert result.passed

    @pytest.mark.asyncio
    async def test_preview_frames(self, driver, run_settings):
        """Debug mode streams JPEG frames while the run is active."""
        settings = run_settings.model_copy(update={"preview_enabled": True, "preview_interval_ms": 10})
        telemetry = RecordingTelemetry()
        b = FlowBuilder("Preview")
        b.step("wait", timeout=50)

        result = await run_flow(b.build(), driver, settings=settings, telemetry=telemetry)

        assert result.passed
        frames = telemetry.of("preview-frame")
        assert frames
        assert base64.b64decode(frames[0]["image"]) == b"\x89PNG fake"
