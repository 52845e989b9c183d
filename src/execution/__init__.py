"""Execution engine interface and a simulated implementation."""

from src.execution.engine import ExecutionEngine, SimulatedExecutionEngine

__all__ = ["ExecutionEngine", "SimulatedExecutionEngine"]
