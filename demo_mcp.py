"""
Demo en vivo del MCP Deploy Orchestrator.

Corre el pipeline completo (build, push, scan, deploy, healthcheck) sobre
la app de tests/fixtures/simple-app via protocolo MCP real, y muestra el
historial de revisiones del namespace "demo".

Necesita Docker y un registry local:
    docker run -d -p 5000:5000 --name registry registry:2
    DEPLOY_REGISTRY_INSECURE=true python demo_mcp.py
"""
import asyncio
import json
import sys
from pathlib import Path

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

PROJECT_ROOT = Path(__file__).parent
FIXTURE_PATH = str(PROJECT_ROOT / "tests" / "fixtures" / "simple-app")
NAMESPACE = "demo"
DEMO_TRIGGER = {
    "trigger_type": "manual",
    "ref": "refs/heads/main",
    "sha": "d0e0c0a0b0d0e0c0a0b0d0e0c0a0b0d0e0c0a0b0",
    "repository": "demo/hello-world",
    "namespace": NAMESPACE,
}


def banner(title):
    print(f"\n{'='*55}")
    print(f"  {title}")
    print(f"{'='*55}")


def ok(msg):
    print(f"  [OK] {msg}")


def info(msg):
    print(f"  --> {msg}")


def payload(result):
    if result.isError:
        print(f"  [ERROR] {result.content[0].text}")
        return None
    return json.loads(result.content[0].text)


async def main():
    server_params = StdioServerParameters(
        command=sys.executable,
        args=["-m", "mcp_deploy"],
        env=None,
    )

    print("\n" + "="*55)
    print("  MCP DEPLOY ORCHESTRATOR - Demo")
    print("="*55)
    print(f"  Servidor:  python -m mcp_deploy (stdio transport)")
    print(f"  Fixture:   {FIXTURE_PATH}")
    print(f"  Namespace: {NAMESPACE}")

    async with stdio_client(server_params) as (read, write):
        async with ClientSession(read, write) as session:

            # ── Conexión al servidor MCP ──────────────────────────────────
            banner("CONECTANDO AL SERVIDOR MCP")
            await session.initialize()
            tools = await session.list_tools()
            tool_names = [t.name for t in tools.tools]
            ok(f"Herramientas registradas ({len(tool_names)}): {', '.join(tool_names)}")

            # ── PASO 1: resolve_target ────────────────────────────────────
            banner("PASO 1 - resolve_target")
            data = payload(await session.call_tool("resolve_target", DEMO_TRIGGER))
            if data is None:
                return
            ok(f"image     = {data['image']}")
            ok(f"namespace = {data['namespace']}")

            # ── PASO 2: run_pipeline ──────────────────────────────────────
            banner("PASO 2 - run_pipeline")
            info("build -> push -> scan -> deploy -> healthcheck")
            data = payload(await session.call_tool(
                "run_pipeline",
                {
                    **DEMO_TRIGGER,
                    "source_path": FIXTURE_PATH,
                    "container_port": 8080,
                    "health_check_path": "/health",
                },
            ))
            if data is None:
                return
            for step in data["steps"]:
                ok(f"{step['name']:<10} {step['status']:<8} {step['duration_seconds']}s")
            print()
            print("\n".join(f"  {line}" for line in data["summary"].splitlines()))
            service_url = data["url"]

            # ── PASO 3: list_revisions ────────────────────────────────────
            banner("PASO 3 - list_revisions")
            data = payload(await session.call_tool("list_revisions", {"namespace": NAMESPACE, "limit": 5}))
            if data is None:
                return
            for revision in data["revisions"]:
                ok(f"{revision['revision_id']:<16} {revision['status']:<8} {revision['image']}")

            # ── PASO 4: healthcheck ───────────────────────────────────────
            if service_url:
                banner("PASO 4 - healthcheck")
                data = payload(await session.call_tool(
                    "healthcheck", {"url": f"{service_url}/health", "timeout": 30}
                ))
                if data is None:
                    return
                ok(f"healthy  = {data['healthy']}")
                ok(f"attempts = {data['attempts']}")

                banner("SERVICIO CORRIENDO")
                print(f"\n    curl {service_url}/")
                print(f"    curl {service_url}/health")
                print(f"\n  Para volver a la revisión sana anterior:")
                print(f"    llamar la herramienta rollback con namespace={NAMESPACE}")
            print()


if __name__ == "__main__":
    asyncio.run(main())
