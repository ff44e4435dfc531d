# Este es el servidor principal MCP que inicializa la configuración, logging,
# registra las 7 herramientas del pipeline de despliegue y ejecuta el servidor FastMCP.

"""
MCP Deploy Orchestrator Server.

Main entry point for the MCP server that runs the deploy pipeline.
Registers all 7 tools and handles server lifecycle.
"""
from mcp.server.fastmcp import FastMCP  # Framework FastMCP para crear servidor MCP

from .config.settings import get_settings  # Singleton de configuración
from .utils.logging import setup_logging, get_logger  # Sistema de logging estructurado

# Import tool registration functions
from .tools.pipeline_tools import register_pipeline_tools  # run_pipeline, resolve_target
from .tools.lifecycle_tools import register_lifecycle_tools  # rollback, list_revisions
from .tools.registry_tools import register_registry_tools  # scan_image, delete_image
from .tools.health_tools import register_health_tools  # healthcheck

settings = get_settings()

settings.ensure_directories()

setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_dir=settings.log_dir
)

logger = get_logger(__name__)

mcp = FastMCP(
    name=settings.server_name,
    json_response=True
)

logger.info(
    "mcp_server_initializing",
    server_name=settings.server_name,
    transport=settings.transport,
    log_level=settings.log_level,
    registry=settings.registry
)

logger.info("registering_mcp_tools")

register_pipeline_tools(mcp)
logger.info("pipeline_tools_registered", tools=["run_pipeline", "resolve_target"])

register_lifecycle_tools(mcp)
logger.info("lifecycle_tools_registered", tools=["rollback", "list_revisions"])

register_registry_tools(mcp)
logger.info("registry_tools_registered", tools=["scan_image", "delete_image"])

register_health_tools(mcp)
logger.info("health_tools_registered", tools=["healthcheck"])

logger.info(
    "mcp_server_ready",
    total_tools=7,
    tools=[
        "run_pipeline",
        "resolve_target",
        "rollback",
        "list_revisions",
        "scan_image",
        "delete_image",
        "healthcheck"
    ]
)


def main():
    """
    Main entry point for running the MCP server.

    Can be invoked via:
    - python -m mcp_deploy
    - the mcp-deploy console script
    """
    logger.info("starting_mcp_server", transport=settings.transport)

    try:
        mcp.run(transport=settings.transport)
    except KeyboardInterrupt:
        logger.info("mcp_server_shutdown", reason="keyboard_interrupt")
    except Exception as e:
        logger.error("mcp_server_error", error=str(e))
        raise


if __name__ == "__main__":
    main()
