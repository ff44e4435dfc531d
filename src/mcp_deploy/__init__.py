# Este archivo marca el paquete mcp_deploy y expone la versión del proyecto.

"""
MCP Deploy Orchestrator - build, scan, deploy and roll back container images
via Model Context Protocol.

Exposes 7 MCP tools around a reusable deploy pipeline.
"""

__version__ = "0.1.0"
__description__ = "MCP server orchestrating container deploys with rollback"

__all__ = ["__version__"]
