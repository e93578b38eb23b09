"""Execution Engine for workflow runs."""

import copy
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.core import (
    ErrorHandlingMode,
    Execution,
    ExecutionStatusEnum,
    LogEntry,
    LogEntryStatus,
    Node,
    NodeType,
    Workflow,
    WorkflowStatus,
)
from ..storage.store import WorkflowStore
from .action_registry import ActionRegistry
from .conditions import ConditionEvaluator
from .exceptions import (
    ExecutionCancelledError,
    ExecutionError,
    NotFoundError,
    StorageError,
    WorkflowNotActiveError,
)
from .logging import clear_logging_context, get_logger, log_with_context, set_logging_context

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Execution cancelled by user"
INTERRUPTED_MESSAGE = "Execution interrupted before it finished"


def timeout_message(timeout_minutes: float) -> str:
    return f"Execution exceeded timeout of {timeout_minutes:g} minutes"


class ExecutionContext:
    """Per-run state shared by the traversal thread and cancel requests."""

    def __init__(self, workflow: Workflow, execution: Execution):
        self.workflow = workflow
        self.execution = execution
        self.cancel_event = threading.Event()
        self.started = time.monotonic()
        self.deadline = self.started + workflow.settings.timeout_minutes * 60
        self.first_error: Optional[str] = None

    @property
    def timeout_message(self) -> str:
        return timeout_message(self.workflow.settings.timeout_minutes)


class ExecutionEngine:
    """Runs active workflows in the background, one worker thread per run.

    Traversal inside a run is depth-first and sequential: outgoing
    connections are followed in list order, each branch finishing before the
    next one starts. A node reachable along several paths runs once per path.
    """

    def __init__(
        self,
        store: WorkflowStore,
        action_registry: ActionRegistry,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        max_concurrent_executions: int = 10
    ):
        """Initialize the execution engine.

        Args:
            store: Persistence for workflows, executions and statistics
            action_registry: Handlers invoked by action nodes
            condition_evaluator: Evaluator for condition nodes and connection guards
            max_concurrent_executions: Size of the worker pool
        """
        self.store = store
        self.action_registry = action_registry
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_executions,
            thread_name_prefix="workflow-run"
        )
        self._max_concurrent_executions = max_concurrent_executions
        self._active_executions: Dict[str, Future] = {}
        self._contexts: Dict[str, ExecutionContext] = {}
        self._lock = threading.RLock()
        self._shut_down = False

        self._node_executors: Dict[NodeType, Callable[[ExecutionContext, Node, Dict[str, Any]], Dict[str, Any]]] = {
            NodeType.TRIGGER: self._execute_passthrough,
            NodeType.CONDITION: self._execute_condition,
            NodeType.ACTION: self._execute_action,
            NodeType.DELAY: self._execute_delay,
            NodeType.SPLIT: self._execute_passthrough,
            NodeType.MERGE: self._execute_passthrough,
        }

        logger.info(f"ExecutionEngine initialized with max_concurrent_executions={max_concurrent_executions}")

    def execute_workflow(self, workflow_id: str, trigger_data: Optional[Dict[str, Any]] = None) -> Execution:
        """
        Start a run of an active workflow.

        The Execution is persisted in ``running`` state and returned at once;
        traversal continues on a worker thread.

        Args:
            workflow_id: ID of the workflow to run
            trigger_data: Payload handed to the trigger node

        Returns:
            Execution: Snapshot of the new execution

        Raises:
            NotFoundError: If the workflow does not exist
            WorkflowNotActiveError: If the workflow status is not active
            ExecutionError: If the engine has been shut down
        """
        if self._shut_down:
            raise ExecutionError("Execution engine is shut down")

        workflow = self.store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(
                f"Workflow '{workflow_id}' not found",
                resource_type="workflow",
                resource_id=workflow_id
            )

        if workflow.status != WorkflowStatus.ACTIVE:
            raise WorkflowNotActiveError(
                f"Workflow '{workflow.name}' is not active (status: {workflow.status.value})",
                workflow_id=workflow_id,
                status=workflow.status.value
            )

        execution = Execution(
            workflow_id=workflow_id,
            trigger_data=copy.deepcopy(trigger_data or {}),
            start_time=datetime.utcnow()
        )
        self.store.upsert_execution(execution)
        snapshot = execution.model_copy(deep=True)

        context = ExecutionContext(workflow, execution)
        with self._lock:
            self._contexts[execution.id] = context
            self._active_executions[execution.id] = self._executor.submit(self._run_with_isolation, context)

        log_with_context(
            logger, logging.INFO,
            f"Started execution {execution.id} of workflow {workflow_id}",
            execution_id=execution.id,
            workflow_id=workflow_id
        )
        return snapshot

    def cancel_execution(self, execution_id: str) -> bool:
        """
        Request cancellation of a running execution.

        The run stops before its next node, or during a delay.

        Returns:
            True if the execution was running in this engine, False otherwise
        """
        with self._lock:
            context = self._contexts.get(execution_id)

        if context is None:
            logger.warning(f"Attempted to cancel non-active execution: {execution_id}")
            return False

        context.cancel_event.set()
        logger.info(f"Cancellation requested for execution {execution_id}")
        return True

    def recover_interrupted_executions(self) -> int:
        """
        Fail executions left ``running`` by an engine that stopped mid-run.

        Runs owned by this engine are left alone. Each recovered run counts
        as a failure in its workflow statistics, and log entries still
        ``started`` are marked failed.

        Returns:
            Number of executions recovered
        """
        with self._lock:
            owned = set(self._contexts)

        recovered = 0
        for execution in self.store.list_running_executions():
            if execution.id in owned:
                continue

            now = datetime.utcnow()
            execution.status = ExecutionStatusEnum.FAILED
            execution.end_time = now
            execution.duration_ms = max((now - execution.start_time).total_seconds() * 1000, 0.0)
            execution.error_message = INTERRUPTED_MESSAGE
            for entry in execution.execution_log:
                if entry.status == LogEntryStatus.STARTED:
                    entry.status = LogEntryStatus.FAILED
                    entry.error_message = INTERRUPTED_MESSAGE

            try:
                self.store.record_execution_result(
                    execution.workflow_id,
                    success=False,
                    duration_ms=execution.duration_ms,
                    finished_at=now
                )
            except (StorageError, NotFoundError) as e:
                logger.error(f"Failed to record statistics for execution {execution.id}: {e.message}")

            self.store.upsert_execution(execution)
            recovered += 1

            log_with_context(
                logger, logging.WARNING,
                f"Marked interrupted execution {execution.id} as failed",
                execution_id=execution.id,
                workflow_id=execution.workflow_id
            )

        return recovered

    def get_execution(self, execution_id: str) -> Execution:
        """
        Get the last persisted state of an execution.

        Raises:
            NotFoundError: If the execution does not exist
        """
        execution = self.store.get_execution(execution_id)
        if execution is None:
            raise NotFoundError(
                f"Execution '{execution_id}' not found",
                resource_type="execution",
                resource_id=execution_id
            )
        return execution

    def list_executions(self, workflow_id: str, limit: int = 50) -> List[Execution]:
        """Executions of a workflow, newest first."""
        return self.store.list_executions(workflow_id, limit=limit)

    def wait_for_completion(self, execution_id: str, timeout: Optional[float] = None) -> Execution:
        """
        Block until a run started by this engine has finished.

        Raises:
            concurrent.futures.TimeoutError: If the run is still going after ``timeout`` seconds
            NotFoundError: If the execution does not exist
        """
        with self._lock:
            future = self._active_executions.get(execution_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get_execution(execution_id)

    def active_execution_count(self) -> int:
        with self._lock:
            return len(self._active_executions)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel running executions and stop the worker pool."""
        self._shut_down = True
        with self._lock:
            contexts = list(self._contexts.values())
        for context in contexts:
            context.cancel_event.set()

        self._executor.shutdown(wait=wait)
        logger.info("ExecutionEngine shutdown completed")

    def _run_with_isolation(self, context: ExecutionContext) -> None:
        """Worker entry point; a failure here never leaks into other runs."""
        execution_id = context.execution.id
        set_logging_context(execution_id=execution_id, workflow_id=context.workflow.id)
        try:
            self._traverse(context)
        except Exception as e:
            logger.error(f"Execution {execution_id} failed unexpectedly: {str(e)}", exc_info=True)
            self._finish(context, ExecutionStatusEnum.FAILED, f"Unexpected engine error: {str(e)}")
        finally:
            clear_logging_context()
            with self._lock:
                self._active_executions.pop(execution_id, None)
                self._contexts.pop(execution_id, None)

    def _traverse(self, context: ExecutionContext) -> None:
        workflow = context.workflow
        triggers = workflow.trigger_nodes()
        if len(triggers) != 1:
            self._finish(
                context, ExecutionStatusEnum.FAILED,
                f"Workflow must have exactly one trigger node, found {len(triggers)}"
            )
            return

        continue_on_error = workflow.settings.error_handling == ErrorHandlingMode.CONTINUE

        # Frames are pushed in reverse so that pops follow connection order.
        stack: List[Tuple[Node, Dict[str, Any]]] = [(triggers[0], context.execution.trigger_data)]

        while stack:
            node, input_data = stack.pop()

            try:
                self._check_interrupted(context)
            except ExecutionCancelledError as e:
                self._log_skipped(context, node, input_data, e.message)
                self._finish_interrupted(context, e)
                return

            try:
                output = self._execute_node(context, node, input_data)
                self._check_deadline(context)
            except ExecutionCancelledError as e:
                self._finish_interrupted(context, e)
                return
            except ExecutionError as e:
                if context.first_error is None:
                    context.first_error = e.message
                if not continue_on_error:
                    self._finish(context, ExecutionStatusEnum.FAILED, e.message)
                    return
                logger.info(f"Continuing after failure of node {node.id}; its branch is skipped")
                continue

            children = []
            for connection in workflow.outgoing_connections(node.id):
                if connection.condition and not self.condition_evaluator.evaluate(connection.condition, output):
                    logger.debug(f"Guard '{connection.condition}' on {connection.id} is false; skipping branch")
                    continue
                target = workflow.get_node(connection.target_node_id)
                if target is None:
                    logger.warning(f"Connection {connection.id} targets missing node {connection.target_node_id}")
                    continue
                children.append((target, output))

            stack.extend(reversed(children))

        if context.first_error is not None:
            self._finish(context, ExecutionStatusEnum.FAILED, context.first_error)
        else:
            self._finish(context, ExecutionStatusEnum.COMPLETED)

    def _execute_node(self, context: ExecutionContext, node: Node, input_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one node and record it in the execution log.

        Args:
            context: Run context
            node: Node to execute
            input_data: Output of the upstream node (trigger data for the trigger)

        Returns:
            The node output

        Raises:
            ExecutionError: If the node executor fails
            ExecutionCancelledError: If the run is cancelled or times out during the node
        """
        entry = LogEntry(
            node_id=node.id,
            node_name=node.label,
            node_type=node.type,
            action=node.config.action_type if node.type == NodeType.ACTION else None,
            status=LogEntryStatus.STARTED,
            input_data=copy.deepcopy(input_data)
        )
        context.execution.execution_log.append(entry)
        self._persist(context)

        started = time.perf_counter()
        try:
            output = self._node_executors[node.type](context, node, copy.deepcopy(input_data))
        except ExecutionCancelledError as e:
            # A node cut off by the deadline failed; a cancelled one was skipped
            entry.status = LogEntryStatus.FAILED if e.timed_out else LogEntryStatus.SKIPPED
            entry.duration_ms = (time.perf_counter() - started) * 1000
            entry.error_message = e.message
            self._persist(context)
            raise
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            entry.status = LogEntryStatus.FAILED
            entry.duration_ms = duration_ms
            entry.error_message = str(e)
            self._persist(context)

            log_with_context(
                logger, logging.ERROR,
                f"Node {node.id} failed: {str(e)}",
                node_id=node.id,
                node_type=node.type.value,
                error_type=type(e).__name__
            )
            raise ExecutionError(
                str(e),
                node_id=node.id,
                execution_id=context.execution.id,
                execution_time_ms=duration_ms
            ) from e

        entry.status = LogEntryStatus.COMPLETED
        entry.output_data = copy.deepcopy(output)
        entry.duration_ms = (time.perf_counter() - started) * 1000
        self._persist(context)

        logger.debug(f"Completed node {node.id} ({node.type.value}) in {entry.duration_ms:.1f}ms")
        return output

    def _execute_passthrough(self, context: ExecutionContext, node: Node, data: Dict[str, Any]) -> Dict[str, Any]:
        return data

    def _execute_condition(self, context: ExecutionContext, node: Node, data: Dict[str, Any]) -> Dict[str, Any]:
        result = self.condition_evaluator.evaluate(node.config.condition, data)
        return {**data, "condition_result": result}

    def _execute_action(self, context: ExecutionContext, node: Node, data: Dict[str, Any]) -> Dict[str, Any]:
        config = node.config
        output = self.action_registry.dispatch(config.action_type, copy.deepcopy(config.action_config), data)
        return {**data, **output}

    def _execute_delay(self, context: ExecutionContext, node: Node, data: Dict[str, Any]) -> Dict[str, Any]:
        seconds = node.config.delay_ms / 1000
        remaining = max(context.deadline - time.monotonic(), 0.0)

        if context.cancel_event.wait(min(seconds, remaining)):
            raise ExecutionCancelledError(CANCELLED_MESSAGE, execution_id=context.execution.id)
        if remaining < seconds:
            raise ExecutionCancelledError(
                context.timeout_message, timed_out=True, execution_id=context.execution.id
            )
        return data

    def _check_interrupted(self, context: ExecutionContext) -> None:
        if context.cancel_event.is_set():
            raise ExecutionCancelledError(CANCELLED_MESSAGE, execution_id=context.execution.id)
        self._check_deadline(context)

    def _check_deadline(self, context: ExecutionContext) -> None:
        if time.monotonic() >= context.deadline:
            raise ExecutionCancelledError(
                context.timeout_message, timed_out=True, execution_id=context.execution.id
            )

    def _log_skipped(self, context: ExecutionContext, node: Node, input_data: Dict[str, Any], reason: str) -> None:
        context.execution.execution_log.append(LogEntry(
            node_id=node.id,
            node_name=node.label,
            node_type=node.type,
            action=node.config.action_type if node.type == NodeType.ACTION else None,
            status=LogEntryStatus.SKIPPED,
            input_data=copy.deepcopy(input_data),
            error_message=reason
        ))
        self._persist(context)

    def _persist(self, context: ExecutionContext) -> None:
        """Write the execution; a failed write is logged and the run goes on."""
        try:
            self.store.upsert_execution(context.execution)
        except StorageError as e:
            logger.error(f"Failed to persist execution {context.execution.id}: {e.message}")

    def _finish_interrupted(self, context: ExecutionContext, error: ExecutionCancelledError) -> None:
        if error.timed_out:
            self._finish(context, ExecutionStatusEnum.FAILED, error.message)
        else:
            self._finish(context, ExecutionStatusEnum.CANCELLED, error.message)

    def _finish(self, context: ExecutionContext, status: ExecutionStatusEnum, error_message: Optional[str] = None) -> None:
        execution = context.execution
        if execution.is_finished:
            return

        execution.status = status
        execution.end_time = datetime.utcnow()
        execution.duration_ms = (time.monotonic() - context.started) * 1000
        execution.error_message = error_message

        # Statistics first, so a run visible as finished is already counted
        try:
            self.store.record_execution_result(
                execution.workflow_id,
                success=status == ExecutionStatusEnum.COMPLETED,
                duration_ms=execution.duration_ms,
                finished_at=execution.end_time
            )
        except (StorageError, NotFoundError) as e:
            logger.error(f"Failed to record statistics for execution {execution.id}: {e.message}")

        self._persist(context)

        log_with_context(
            logger, logging.INFO if status == ExecutionStatusEnum.COMPLETED else logging.WARNING,
            f"Execution {execution.id} finished with status {status.value}",
            status=status.value,
            duration_ms=round(execution.duration_ms, 2),
            nodes_logged=len(execution.execution_log),
            error_message=error_message
        )
