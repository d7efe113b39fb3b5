"""Structural validation of workflow graphs."""

from collections import Counter
from typing import Dict, List, Set

from ..models.core import (
    NodeKind,
    ValidationIssue,
    ValidationReason,
    ValidationResult,
    Workflow,
)
from .exceptions import GraphValidationError
from .logging import get_logger

logger = get_logger(__name__)


class GraphValidator:
    """Checks the structural invariants a workflow must hold before it may run.

    Validation is a pure function of the workflow: it never touches storage
    and never invokes a node executor.
    """

    def validate(self, workflow: Workflow) -> ValidationResult:
        """
        Validate a workflow graph for structural correctness.

        Args:
            workflow: The workflow to validate

        Returns:
            ValidationResult: Validation results with errors and warnings
        """
        issues: List[ValidationIssue] = []
        warnings: List[str] = []

        self._validate_unique_ids(workflow, issues)
        self._validate_edge_references(workflow, issues)
        self._validate_decision_branches(workflow, issues)
        self._validate_branch_labels(workflow, warnings)
        self._validate_cycles(workflow, warnings)
        self._validate_isolated_nodes(workflow, warnings)

        result = ValidationResult(
            is_valid=not issues,
            errors=[issue.message for issue in issues],
            warnings=warnings,
            issues=issues
        )

        logger.debug(f"Workflow validation completed. Valid: {result.is_valid}, "
                     f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}")
        return result

    def ensure_valid(self, workflow: Workflow) -> ValidationResult:
        """Validate and raise GraphValidationError when the graph is invalid."""
        result = self.validate(workflow)
        if not result.is_valid:
            error_msg = f"Workflow validation failed: {'; '.join(result.errors)}"
            logger.error(error_msg)
            raise GraphValidationError(
                error_msg,
                validation_errors=result.errors,
                workflow_name=workflow.name
            )
        if result.warnings:
            logger.warning(f"Workflow validation warnings: {'; '.join(result.warnings)}")
        return result

    def _validate_unique_ids(self, workflow: Workflow, issues: List[ValidationIssue]):
        counts = Counter(node.id for node in workflow.nodes)
        for node_id, count in counts.items():
            if count > 1:
                issues.append(ValidationIssue(
                    reason=ValidationReason.DUPLICATE_NODE_ID,
                    message=f"Duplicate node ID '{node_id}' appears {count} times",
                    node_id=node_id
                ))

    def _validate_edge_references(self, workflow: Workflow, issues: List[ValidationIssue]):
        node_ids = {node.id for node in workflow.nodes}
        for edge in workflow.edges:
            if edge.source not in node_ids:
                issues.append(ValidationIssue(
                    reason=ValidationReason.DANGLING_EDGE,
                    message=f"Edge '{edge.id}' references non-existent source node: '{edge.source}'",
                    edge_id=edge.id,
                    node_id=edge.source
                ))
            if edge.target not in node_ids:
                issues.append(ValidationIssue(
                    reason=ValidationReason.DANGLING_EDGE,
                    message=f"Edge '{edge.id}' references non-existent target node: '{edge.target}'",
                    edge_id=edge.id,
                    node_id=edge.target
                ))

    def _validate_decision_branches(self, workflow: Workflow, issues: List[ValidationIssue]):
        """A decision node with outgoing edges needs both a true and a false branch."""
        seen: Set[str] = set()
        for node in workflow.nodes:
            if node.kind != NodeKind.DECISION or node.id in seen:
                continue
            seen.add(node.id)

            outgoing = [edge for edge in workflow.edges if edge.source == node.id]
            if not outgoing:
                continue

            labels = {edge.label for edge in outgoing}
            missing = [label for label in ("true", "false") if label not in labels]
            if missing:
                issues.append(ValidationIssue(
                    reason=ValidationReason.MISSING_BRANCH_EDGE,
                    message=(
                        f"Decision node '{node.id}' is missing outgoing edge(s) labelled: "
                        f"{', '.join(missing)}"
                    ),
                    node_id=node.id
                ))

    def _validate_branch_labels(self, workflow: Workflow, warnings: List[str]):
        kinds = {node.id: node.kind for node in workflow.nodes}
        for edge in workflow.edges:
            if edge.label and edge.source in kinds and kinds[edge.source] != NodeKind.DECISION:
                warnings.append(
                    f"Edge '{edge.id}' carries branch label '{edge.label}' but its source "
                    f"'{edge.source}' is not a decision node; the label is ignored"
                )

    def _validate_cycles(self, workflow: Workflow, warnings: List[str]):
        if has_cycles(workflow):
            warnings.append(
                "Workflow contains cycles. Declaration-order runs are unaffected; "
                "graph traversal stops a node after the configured visit limit."
            )

    def _validate_isolated_nodes(self, workflow: Workflow, warnings: List[str]):
        if len(workflow.nodes) < 2:
            return
        connected = set()
        for edge in workflow.edges:
            connected.add(edge.source)
            connected.add(edge.target)
        isolated = sorted({node.id for node in workflow.nodes} - connected)
        if isolated:
            warnings.append(f"Isolated nodes detected: {', '.join(isolated)}")


def adjacency(workflow: Workflow) -> Dict[str, List[str]]:
    """Map each node id to the targets of its outgoing edges, in edge order."""
    graph: Dict[str, List[str]] = {}
    for edge in workflow.edges:
        graph.setdefault(edge.source, []).append(edge.target)
    return graph


def has_cycles(workflow: Workflow) -> bool:
    """Check if the graph contains cycles using an iterative DFS."""
    if not workflow.edges:
        return False

    graph = adjacency(workflow)
    visited: Set[str] = set()
    on_path: Set[str] = set()

    for root in list(graph):
        if root in visited:
            continue
        visited.add(root)
        on_path.add(root)
        stack = [(root, iter(graph.get(root, [])))]

        while stack:
            node_id, neighbors = stack[-1]
            for neighbor in neighbors:
                if neighbor in on_path:
                    return True
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_path.add(neighbor)
                    stack.append((neighbor, iter(graph.get(neighbor, []))))
                    break
            else:
                on_path.discard(node_id)
                stack.pop()

    return False
