"""Main entry point for the health monitor."""

import asyncio
import json
import sys

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from sentinel import __version__
from sentinel.config import get_config
from sentinel.logging_setup import configure_logging
from sentinel.scheduler.coordinator import MonitorCoordinator

logger = structlog.get_logger(__name__)

# Global coordinator instance
coordinator: MonitorCoordinator = None
app = FastAPI(title="Sentinel Health Monitor", version=__version__)


def _not_initialized() -> JSONResponse:
    return JSONResponse(content={"success": False, "error": "System not initialized"}, status_code=503)


def _payload(result: dict, failure_status: int = 200) -> JSONResponse:
    status_code = 200 if result.get("success") else failure_status
    return JSONResponse(content=json.loads(json.dumps(result, default=str)), status_code=status_code)


@app.on_event("startup")
async def startup_event():
    """Initialize the monitor on startup."""
    global coordinator
    config = get_config()
    configure_logging(config.log_level)
    coordinator = MonitorCoordinator(config)
    await coordinator.start()
    logger.info("Health monitor started", environment=config.environment)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    global coordinator
    if coordinator:
        await coordinator.stop()
    logger.info("Health monitor stopped")


@app.get("/")
async def root():
    """Liveness endpoint."""
    return {"status": "healthy", "service": "sentinel", "version": __version__}


@app.get("/status")
async def get_status():
    """Get scheduler and task status."""
    if not coordinator:
        return _not_initialized()
    return _payload({"success": True, **coordinator.get_system_status()})


@app.post("/run/health-check")
async def run_health_check():
    """Run one health-check tick now and return its results."""
    if not coordinator:
        return _not_initialized()
    return _payload(await coordinator.run_health_check(), failure_status=500)


@app.post("/run/reliability")
async def run_reliability():
    """Recompute reliability scores now."""
    if not coordinator:
        return _not_initialized()
    return _payload(await coordinator.run_reliability_calculation(), failure_status=500)


@app.get("/reliability/{service_id}")
async def get_reliability(service_id: str):
    if not coordinator:
        return _not_initialized()
    return _payload(await coordinator.get_reliability(service_id), failure_status=404)


@app.get("/tasks/{task_id}")
async def get_task_status(task_id: str):
    """Get status of a specific task."""
    if not coordinator:
        return _not_initialized()

    status = coordinator.get_task_status(task_id)
    if status is None:
        return JSONResponse(content={"success": False, "error": "Task not found"}, status_code=404)
    return _payload({"success": True, **status})


@app.get("/debug/services")
async def debug_services():
    """List every service with its latest sample and sample count."""
    if not coordinator:
        return _not_initialized()
    return _payload(await coordinator.debug_services(), failure_status=500)


@app.get("/debug/test-health/{service_id}")
async def debug_test_health(service_id: str):
    """Probe one service once without persisting the result."""
    if not coordinator:
        return _not_initialized()
    return _payload(await coordinator.test_service_health(service_id), failure_status=404)


@app.websocket("/ws/health")
async def health_updates(websocket: WebSocket):
    """Stream live health updates as JSON messages."""
    await websocket.accept()
    if not coordinator:
        await websocket.close(code=1013)
        return

    queue = coordinator.hub.subscribe()
    try:
        while True:
            update = await queue.get()
            await websocket.send_json(update.to_dict())
    except WebSocketDisconnect:
        logger.debug("Live update subscriber disconnected")
    finally:
        coordinator.hub.unsubscribe(queue)


async def run_cli_command(command: str, *args):
    """Run a single monitor operation from the command line."""
    config = get_config()
    configure_logging(config.log_level)
    logger.info("Running CLI command", command=command, args=args)

    coordinator_instance = MonitorCoordinator(config)
    await coordinator_instance.start(schedule_jobs=False)

    try:
        if command == "check":
            result = await coordinator_instance.run_health_check()
            print("Health Check Results:")
            print(f"Checked: {result.get('checked', 0)}")
            print(f"Failed: {len(result.get('failed_services', []))}")
            print(f"Alerted: {len(result.get('alerted', []))}")
            for row in result.get("results", []):
                print(f"  {row['service_name']}: {row['status']} ({row['latency_ms']}ms)")

        elif command == "reliability":
            result = await coordinator_instance.run_reliability_calculation()
            print("Reliability Scores:")
            for score in result.get("scores", []):
                print(f"  {score['service_id']}: uptime={score['uptime_percent']:.2f}% "
                      f"p95={score['p95_latency_ms']}ms {score['status']}")

        elif command == "test-health":
            if not args:
                print("Usage: test-health <service_id>")
                return
            result = await coordinator_instance.test_service_health(args[0])
            print(json.dumps(result, indent=2, default=str))

        elif command == "status":
            status = coordinator_instance.get_system_status()
            print("System Status:")
            print(f"Running tasks: {status['running_tasks']}")
            print(f"Completed tasks: {status['completed_tasks']}")
            print(f"Alerts enabled: {status['alerts_enabled']}")

        else:
            print(f"Unknown command: {command}")
            print("Available commands: check, reliability, test-health <service_id>, status")

    finally:
        await coordinator_instance.stop()


def main():
    """Main entry point with argument handling."""
    if len(sys.argv) < 2:
        # No arguments - start web server
        config = get_config()
        configure_logging(config.log_level)
        logger.info("Starting health monitor web server", host=config.api_host, port=config.api_port)
        uvicorn.run(
            "main:app",
            host=config.api_host,
            port=config.api_port,
            reload=False,
            log_level=config.log_level.lower()
        )
    else:
        # CLI mode
        command = sys.argv[1]
        args = sys.argv[2:]
        asyncio.run(run_cli_command(command, *args))


if __name__ == "__main__":
    main()
