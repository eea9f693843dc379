"""
Maxwell — Sandboxed Agent Runner

This package contains the worker process that runs inside a conversation's
container. The host launches it once per session, hands it a JSON task on
stdin, and then talks to it through a file-based mailbox until it is told
to close.

Layers (bottom to top):
    1. Tools (sandboxed filesystem/shell gateway + MCP bridge)
    2. Reasoning engine adapter (Claude tool-use loop, in-memory sessions)
    3. Instruction assembly
    4. Mailbox polling and framed output
    5. Session turn controller
"""

__version__ = "0.1.0"
