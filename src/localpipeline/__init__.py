"""localpipeline - Dispatch tracker work items to a pool of coding agents.

This package assigns work items pulled from or pushed by issue trackers to a
fixed pool of named agents. Each agent runs a coding-agent subprocess in its
own git worktree, and outcomes are reconciled back into the tracker.
"""

__version__ = "0.1.0"
