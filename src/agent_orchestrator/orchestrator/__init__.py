"""Dependency-aware scheduler for agent tasks.

Why threads and not asyncio?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Executors are blocking by nature: they shell out to CLI agents or call
synchronous SDKs. A thread pool sized to ``max_parallel_agents`` bounds
concurrency directly, while the scheduling loop stays on the caller's
thread and owns every status change. Executors never touch scheduler state,
so the only shared structures (ResultStore, MessageBus) carry their own
locks.

Entry points: :class:`~agent_orchestrator.orchestrator.scheduler.Orchestrator`
for ad-hoc task sets and
:func:`~agent_orchestrator.orchestrator.workflows.run_workflow` for
parameterised workflow definitions.
"""
