"""Tests for the workflow graph models."""

import pytest
from pydantic import ValidationError

from graphflow.models.core import (
    Connection,
    ExecutionRun,
    ExecutionStatusEnum,
    LogLevel,
    Node,
    Workflow,
)
from tests.conftest import make_workflow


class TestNode:
    """Test cases for Node."""

    def test_name_defaults_to_type(self):
        """A node without a name is named after its type."""
        node = Node(id="a", type="noOp")
        assert node.name == "noOp"

    def test_rejects_unsafe_id(self):
        """Node ids are restricted to a safe character set."""
        with pytest.raises(ValidationError):
            Node(id="bad id!", type="noOp")

    def test_rejects_empty_type(self):
        """A node must name its executor type."""
        with pytest.raises(ValidationError):
            Node(id="a", type="  ")


class TestConnection:
    """Test cases for Connection."""

    def test_handles_default_to_main(self):
        """Missing handles are the unlabelled ``main`` handle."""
        conn = Connection(source_node_id="a", target_node_id="b", source_output=None)
        assert conn.source_output == "main"
        assert conn.target_input == "main"
        assert conn.is_unlabelled

    def test_self_connection_rejected(self):
        """A node cannot feed itself."""
        with pytest.raises(ValidationError):
            Connection(source_node_id="a", target_node_id="a")

    def test_matches_branch_on_either_handle(self):
        """Branch names match the source output or the target input handle."""
        by_output = Connection(source_node_id="a", source_output="true", target_node_id="b")
        by_input = Connection(source_node_id="a", target_node_id="b", target_input="high")
        assert by_output.matches_branch("true")
        assert by_input.matches_branch("high")
        assert not by_output.matches_branch("false")


class TestWorkflowStructure:
    """Test cases for workflow validation."""

    def test_trigger_nodes_are_untargeted(self):
        """Trigger nodes are exactly the nodes no connection targets."""
        workflow = make_workflow(
            [{"id": "a", "type": "noOp"}, {"id": "b", "type": "noOp"}, {"id": "c", "type": "noOp"}],
            [("a", "c"), ("b", "c")],
        )
        assert [node.id for node in workflow.trigger_nodes()] == ["a", "b"]

    def test_valid_dag(self):
        """A simple chain is valid."""
        workflow = make_workflow([{"id": "a", "type": "noOp"}, {"id": "b", "type": "noOp"}], [("a", "b")])
        result = workflow.validate_structure()
        assert result.is_valid
        assert result.errors == []

    def test_cycle_is_an_error(self):
        """Cycles make the workflow invalid."""
        workflow = make_workflow(
            [{"id": "t", "type": "noOp"}, {"id": "a", "type": "noOp"}, {"id": "b", "type": "noOp"}],
            [("t", "a"), ("a", "b"), ("b", "a")],
        )
        result = workflow.validate_structure()
        assert not result.is_valid
        assert any("cycle" in error for error in result.errors)
        assert workflow.find_cycle() == ["a", "b", "a"]

    def test_cycle_behind_downstream_nodes(self):
        """The reported cycle only contains nodes on the loop."""
        workflow = make_workflow(
            [{"id": node_id, "type": "noOp"} for node_id in ("t", "a", "b", "c", "d")],
            [("t", "a"), ("a", "b"), ("b", "c"), ("c", "a"), ("c", "d")],
        )
        cycle = workflow.find_cycle()
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}
        result = workflow.validate_structure()
        assert "Workflow contains a cycle: " + " -> ".join(cycle) in result.errors

    def test_long_chain_is_valid(self):
        """Deep chains validate without hitting the recursion limit."""
        node_ids = [f"n{i}" for i in range(2000)]
        workflow = make_workflow(
            [{"id": node_id, "type": "noOp"} for node_id in node_ids],
            list(zip(node_ids, node_ids[1:])),
        )
        assert workflow.find_cycle() is None
        assert workflow.validate_structure().is_valid

    def test_dangling_connection_is_an_error(self):
        """Connections must reference existing nodes."""
        workflow = make_workflow([{"id": "a", "type": "noOp"}], [("a", "ghost")])
        result = workflow.validate_structure()
        assert not result.is_valid
        assert any("ghost" in error for error in result.errors)

    def test_duplicate_ids_are_an_error(self):
        """Node ids must be unique."""
        workflow = make_workflow([{"id": "a", "type": "noOp"}, {"id": "a", "type": "set"}])
        result = workflow.validate_structure()
        assert not result.is_valid
        assert any("Duplicate" in error for error in result.errors)

    def test_isolated_nodes_are_warnings(self):
        """Unconnected nodes only produce warnings."""
        workflow = make_workflow(
            [{"id": "a", "type": "noOp"}, {"id": "b", "type": "noOp"}, {"id": "lonely", "type": "noOp"}],
            [("a", "b")],
        )
        result = workflow.validate_structure()
        assert result.is_valid
        assert any("lonely" in warning for warning in result.warnings)


class TestExecutionRun:
    """Test cases for ExecutionRun and log levels."""

    def test_terminal_statuses(self):
        """Success, failure and cancellation are terminal."""
        assert ExecutionStatusEnum.SUCCESS.is_terminal
        assert ExecutionStatusEnum.CANCELLED.is_terminal
        assert not ExecutionStatusEnum.RUNNING.is_terminal

    def test_duration_requires_both_timestamps(self):
        """Duration is unknown until the run has finished."""
        run = ExecutionRun(workflow_id="wf")
        assert run.duration_ms is None

    def test_log_level_ordering(self):
        """Levels are ordered from TRACE to FATAL."""
        assert LogLevel.ERROR.at_least(LogLevel.WARN)
        assert not LogLevel.DEBUG.at_least(LogLevel.INFO)
        assert LogLevel.FATAL.severity > LogLevel.TRACE.severity
