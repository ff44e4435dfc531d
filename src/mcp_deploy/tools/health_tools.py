# Este archivo implementa la herramienta MCP para verificación de salud de servicios:
# healthcheck con retry exponencial y timeout configurable.

"""
MCP tools for service health checking.

Implements healthcheck tool with exponential backoff.
"""
import asyncio  # Ejecutar el polling bloqueante fuera del event loop
from typing import Optional  # Type hints para valores opcionales

from mcp.server.fastmcp import FastMCP  # Framework FastMCP para registro de herramientas

from ..config.settings import get_settings  # Singleton de configuración
from ..pipeline.factory import create_health_checker  # Health checker configurado
from ..utils.logging import get_logger  # Logger estructurado

logger = get_logger(__name__)
settings = get_settings()


def register_health_tools(mcp: FastMCP) -> None:
    """
    Register health check MCP tools.

    Args:
        mcp: FastMCP server instance
    """

    @mcp.tool()
    async def healthcheck(url: str, timeout: Optional[float] = None) -> dict:
        """
        Validate service availability with exponential backoff retry.

        Polls the URL until it returns HTTP 200 or the timeout is reached,
        using the same interval, backoff and cap the pipeline uses after a
        deploy. A timeout is reported as healthy=false, not as an error.

        Args:
            url: URL to check (e.g., http://127.0.0.1:8000/health)
            timeout: Maximum seconds to wait (default: from settings, typically 300)

        Returns:
            Dictionary containing:
                - healthy: Boolean indicating if service is healthy
                - url: URL that was checked
                - response_code: Last HTTP status code
                - attempts: Number of attempts made
                - elapsed_seconds: Total time elapsed
                - error: Last error (if unhealthy)
        """
        max_timeout = timeout if timeout is not None else settings.health_check_timeout
        logger.info("healthcheck_requested", url=url, timeout=max_timeout)

        checker = create_health_checker(settings.pipeline_config())
        result = await asyncio.to_thread(checker.check, url, max_timeout)
        return result.model_dump()
