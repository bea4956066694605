"""Orchestration for the agent pool.

Submodules:
    state_machine: Authoritative agent lifecycle and transition validation.
    dispatcher: Claims agents, provisions workspaces, launches subprocesses.
    supervisor: Periodic loop that releases finished agents and retries failed ones.
    synchronizer: Best-effort status reconciliation into trackers.
"""
