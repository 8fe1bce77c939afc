"""
Entry point for running klever_mcp as a module.

Allows running the context server via:
    python -m klever_mcp
    uv run python -m klever_mcp
"""

from klever_mcp.server import main

if __name__ == "__main__":
    main()
