# Este archivo permite ejecutar el servidor MCP como módulo Python usando: python -m mcp_deploy

"""
Entry point for running the MCP Deploy Orchestrator as a Python module.

Usage:
    python -m mcp_deploy
"""

from .server import main

if __name__ == "__main__":
    main()
