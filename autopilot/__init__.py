"""
Practice Autopilot

Marketing-operations agents for managed practice accounts.
Scholar (keyword research) + Ghostwriter (content + compliance) + Conductor.

Usage:
    from autopilot.context import build_context
    from autopilot.conductor import run_conductor

    ctx = build_context()
    result = await run_conductor(ctx, account_id="acct-123")
"""

__version__ = "1.0.0"
