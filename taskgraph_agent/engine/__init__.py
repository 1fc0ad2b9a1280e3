"""Execution engine: task model, constraints, checkpoints, graph and supervisor.

Application wiring lives in ``taskgraph_agent.engine.factory``; the caller-facing
façade is ``taskgraph_agent.engine.supervisor.Supervisor``.
"""
