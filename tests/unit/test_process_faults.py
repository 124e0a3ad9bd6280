"""
Unit tests for ProcessFaultHandlers — driven through FakeProcessControl.

No real hooks, timers or exits: the fake records registrations, arms
inspectable timers and collects exit codes.
"""

from __future__ import annotations

import pytest

from transit_guard.config import Environment
from transit_guard.domain.faults import UnhandledRejectionError
from transit_guard.lifecycle.process_faults import FATAL_EXIT_CODE, ProcessFaultHandlers


@pytest.fixture()
def handlers(sink, process) -> ProcessFaultHandlers:
    installed = ProcessFaultHandlers(sink, process, flush_grace_seconds=1.0)
    installed.install()
    return installed


class TestInstall:
    def test_registers_both_hooks(self, handlers: ProcessFaultHandlers, process) -> None:
        assert handlers.installed is True
        assert len(process.uncaught_handlers) == 1
        assert len(process.rejection_handlers) == 1

    def test_second_install_is_noop(self, handlers: ProcessFaultHandlers, process) -> None:
        handlers.install()

        assert len(process.uncaught_handlers) == 1
        assert len(process.rejection_handlers) == 1


class TestUncaughtFault:
    def test_reports_fatal_and_exits_after_grace(self, handlers, sink, process) -> None:
        """
        GIVEN installed handlers
        WHEN an uncaught fault reaches the process hook
        THEN it is reported as fatal, one exit timer is armed, and firing it exits 1.
        """
        error = RuntimeError("tracker thread died")

        process.uncaught_handlers[0](error)

        assert sink.reports == [(error, {"context": "uncaught_fault", "fatal": True})]
        assert len(process.timers) == 1
        assert process.timers[0].delay == 1.0
        assert process.exit_codes == []

        process.timers[0].fire()

        assert process.exit_codes == [FATAL_EXIT_CODE]
        assert sink.flush_calls == [0]

    def test_second_fault_during_grace_arms_no_second_timer(self, handlers, sink, process) -> None:
        process.uncaught_handlers[0](RuntimeError("first"))
        process.uncaught_handlers[0](RuntimeError("second"))

        assert len(sink.reports) == 2
        assert len(process.timers) == 1


class TestUnhandledRejection:
    def test_non_exception_reason_is_wrapped(self, handlers, sink, process) -> None:
        """
        GIVEN a rejection whose reason is not an exception
        WHEN the rejection hook fires
        THEN the report carries an UnhandledRejectionError with the reason.
        """
        process.rejection_handlers[0]("socket closed", "task-7")

        error, context = sink.reports[0]
        assert isinstance(error, UnhandledRejectionError)
        assert str(error) == "Unhandled Rejection: socket closed"
        assert error.source == "task-7"
        assert context == {"context": "unhandled_rejection", "reason": "socket closed", "fatal": True}
        assert len(process.timers) == 1

    def test_exception_reason_reported_as_is(self, handlers, sink, process) -> None:
        reason = ConnectionResetError("peer reset")

        process.rejection_handlers[0](reason, None)

        assert sink.reports[0][0] is reason

    def test_rejection_then_uncaught_share_one_timer(self, handlers, process) -> None:
        process.rejection_handlers[0]("x", None)
        process.uncaught_handlers[0](RuntimeError("y"))

        assert len(process.timers) == 1


class TestDatabaseFault:
    def test_production_exits_immediately(self, sink, process) -> None:
        handlers = ProcessFaultHandlers(sink, process, environment=Environment.PRODUCTION)

        handlers.on_database_fault(ConnectionError("connection refused"))

        assert sink.reports[0][1] == {"context": "database_connection"}
        assert process.exit_codes == [FATAL_EXIT_CODE]

    def test_development_keeps_running(self, sink, process) -> None:
        handlers = ProcessFaultHandlers(sink, process, environment=Environment.DEVELOPMENT)

        handlers.on_database_fault(ConnectionError("connection refused"))

        assert len(sink.reports) == 1
        assert process.exit_codes == []
