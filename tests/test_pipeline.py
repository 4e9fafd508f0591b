"""Tests for pipeline compilation."""

import logging

import pytest

from portico.conn import Conn
from portico.exceptions import PipelineError
from portico.pipeline import (
    PipelineBuilder,
    PipelineStep,
    Plug,
    compile_pipeline,
    tracking,
)


def tag(conn: Conn, opts) -> Conn:
    return conn.assign("trail", conn.assigns.get("trail", []) + [opts])


def halt(conn: Conn, opts) -> Conn:
    return conn.halt()


class Counter(Plug):
    inits = 0

    def init(self, opts):
        Counter.inits += 1
        return {"label": opts.upper()}

    def call(self, conn: Conn, opts) -> Conn:
        return tag(conn, opts["label"])


def test_steps_run_in_declaration_order() -> None:
    handler = compile_pipeline(
        [PipelineStep(tag, "a"), PipelineStep(tag, "b"), PipelineStep(tag, "c")]
    )
    assert handler(Conn()).assigns["trail"] == ["a", "b", "c"]


def test_no_steps_is_identity() -> None:
    conn = Conn()
    assert compile_pipeline([])(conn) is conn
    assert compile_pipeline([PipelineStep(tag, "x", enabled=False)])(conn) is conn


def test_halting_skips_later_steps(caplog) -> None:
    handler = compile_pipeline(
        [PipelineStep(tag, "a"), PipelineStep(halt), PipelineStep(tag, "never")]
    )
    with caplog.at_level(logging.DEBUG, logger="portico.pipeline"):
        conn = handler(Conn(request_path="/stop"))
    assert conn.halted
    assert conn.assigns["trail"] == ["a"]
    assert "/stop halted in" in caplog.text


def test_disabled_steps_are_dropped() -> None:
    builder = PipelineBuilder()
    builder.plug(tag, "a")
    builder.plug(tag, "skipped", enabled=False)
    builder.plug(tag, "b")
    assert builder.compile()(Conn()).assigns["trail"] == ["a", "b"]


def test_module_plug_is_initialized_once() -> None:
    Counter.inits = 0
    handler = compile_pipeline([PipelineStep(Counter, "x")])
    handler(Conn())
    conn = handler(Conn())
    assert Counter.inits == 1
    assert conn.assigns["trail"] == ["X"]


def test_plug_can_be_given_as_import_string() -> None:
    handler = compile_pipeline([PipelineStep("tests.test_pipeline:tag", "s")])
    assert handler(Conn()).assigns["trail"] == ["s"]


def test_builder_plug_works_as_decorator() -> None:
    builder = PipelineBuilder()

    @builder.plug
    def mark(conn: Conn, opts) -> Conn:
        return conn.assign("marked", True)

    assert builder.steps == (PipelineStep(mark),)
    assert builder.compile()(Conn()).assigns["marked"] is True


def test_prepend_runs_first() -> None:
    builder = PipelineBuilder()
    builder.plug(tag, "second")
    builder.prepend(tag, "first")
    assert builder.compile()(Conn()).assigns["trail"] == ["first", "second"]


def test_step_returning_non_conn_raises() -> None:
    def broken(conn, opts):
        return None

    handler = compile_pipeline([PipelineStep(broken)])
    with pytest.raises(PipelineError, match="expected a Conn"):
        handler(Conn())


def test_invalid_plug_is_rejected_at_compile_time() -> None:
    class NotAPlug:
        pass

    with pytest.raises(PipelineError):
        compile_pipeline([PipelineStep(NotAPlug)])
    with pytest.raises(PipelineError):
        compile_pipeline([PipelineStep(42)])


def test_tracking_follows_replacement_conns() -> None:
    replacement = Conn(request_path="/new")

    def replace(conn, opts):
        return replacement

    handler = compile_pipeline([PipelineStep(tag, "a"), PipelineStep(replace)])
    original = Conn()
    with tracking(original) as latest:
        assert latest() is original
        handler(original)
        assert latest() is replacement
