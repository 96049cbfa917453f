"""
MCP Server for the stem-tracking controller.

Exposes tools to feed telemetry and stem estimates, step or run the control
loop, and inspect phase, setpoint and visualization geometry.
"""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from stemtrack.config import ConfigError, update_config
from stemtrack.tactile import MockTactileInterpreter

from .node import get_node

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create the MCP server
server = Server("stemtrack-mcp")


def json_response(data: Any) -> list[TextContent]:
    """Format response as JSON text content."""
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools for the stem-tracking controller."""
    return [
        Tool(
            name="get_status",
            description="Get the current phase, joint cache, stem model, setpoint and last tick result.",
            inputSchema={
                "type": "object",
                "properties": {},
            },
        ),
        Tool(
            name="tick",
            description="Run a single control tick and return its result. "
                       "Use this to step the task by hand while the loop is stopped.",
            inputSchema={
                "type": "object",
                "properties": {
                    "count": {
                        "type": "integer",
                        "description": "Number of ticks to run (default 1)",
                        "default": 1,
                        "minimum": 1,
                        "maximum": 1000,
                    },
                },
            },
        ),
        Tool(
            name="start",
            description="Start the background control loop at the configured update rate.",
            inputSchema={
                "type": "object",
                "properties": {},
            },
        ),
        Tool(
            name="stop",
            description="Stop the background control loop.",
            inputSchema={
                "type": "object",
                "properties": {},
            },
        ),
        Tool(
            name="load_stem",
            description="Replace the stem polyline. Coordinates in meters in the robot base frame, "
                       "ordered bottom to top (set flip if ordered top to bottom).",
            inputSchema={
                "type": "object",
                "properties": {
                    "x": {"type": "array", "items": {"type": "number"}},
                    "y": {"type": "array", "items": {"type": "number"}},
                    "z": {"type": "array", "items": {"type": "number"}},
                    "flip": {"type": "boolean", "default": False},
                },
                "required": ["x", "y", "z"],
            },
        ),
        Tool(
            name="update_joints",
            description="Feed joint measurements: torso position and/or the seven arm joint positions (radians).",
            inputSchema={
                "type": "object",
                "properties": {
                    "torso": {"type": "number", "description": "Torso joint position"},
                    "arm": {
                        "type": "array",
                        "items": {"type": "number"},
                        "minItems": 7,
                        "maxItems": 7,
                        "description": "Arm joint positions, shoulder to wrist",
                    },
                },
            },
        ),
        Tool(
            name="set_tactile",
            description="Set whisker events (mock interpreter only).",
            inputSchema={
                "type": "object",
                "properties": {
                    "calibrated": {"type": "boolean"},
                    "grasp_detected": {"type": "boolean"},
                },
            },
        ),
        Tool(
            name="get_config",
            description="Get the controller configuration.",
            inputSchema={
                "type": "object",
                "properties": {},
            },
        ),
        Tool(
            name="set_config",
            description="Update control and supervisor settings. Takes effect for the setpoint "
                       "generator immediately.",
            inputSchema={
                "type": "object",
                "properties": {
                    "control": {
                        "type": "object",
                        "description": "{max_z_velocity, update_rate_hz, up_to_date_threshold}",
                    },
                    "supervisor": {
                        "type": "object",
                        "description": "{completion_height, end_of_stem_tolerance, on_stem_tolerance, debug_state}",
                    },
                },
            },
        ),
        Tool(
            name="get_markers",
            description="Get the latest visualization geometry (stem, gripper, nearest stem point, tangent).",
            inputSchema={
                "type": "object",
                "properties": {},
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""

    node = get_node()

    try:
        if name == "get_status":
            return json_response(node.get_status())

        elif name == "tick":
            count = int(arguments.get("count", 1))
            results = [node.tick() for _ in range(count)]
            return json_response(results[-1].to_dict() if count == 1 else [r.to_dict() for r in results])

        elif name == "start":
            return json_response(node.start())

        elif name == "stop":
            return json_response(node.stop())

        elif name == "load_stem":
            loaded = node.on_stem_nodes(
                arguments["x"], arguments["y"], arguments["z"],
                flip=arguments.get("flip", False),
            )
            if not loaded:
                return json_response({"success": False, "error": "x, y and z must have the same length"})
            return json_response({"success": True, "num_nodes": node.stem.num_nodes})

        elif name == "update_joints":
            result = {}
            if "torso" in arguments:
                result["torso_updated"] = node.on_torso_state([arguments["torso"]])
            if "arm" in arguments:
                result["arm_updated"] = node.on_arm_state(arguments["arm"])
            if not result:
                return json_response({"error": "Provide torso and/or arm positions"})
            return json_response(result)

        elif name == "set_tactile":
            if not isinstance(node.tactile, MockTactileInterpreter):
                return json_response({"error": "Tactile events come from the whisker interpreter, not settable"})
            node.tactile.set(
                calibrated=arguments.get("calibrated"),
                grasp_detected=arguments.get("grasp_detected"),
            )
            return json_response(node.tactile.to_dict())

        elif name == "get_config":
            return json_response(node.config.to_dict())

        elif name == "set_config":
            try:
                config = update_config(
                    control=arguments.get("control"),
                    supervisor=arguments.get("supervisor"),
                )
            except ConfigError as e:
                return json_response({"success": False, "errors": e.errors})
            node.controller.configure(config.control.max_z_velocity, config.control.update_rate_hz)
            node.robot_status.set_up_to_date_threshold(config.control.up_to_date_threshold)
            return json_response({
                "success": True,
                "updated_config": config.to_dict(),
            })

        elif name == "get_markers":
            return json_response([m.to_dict() for m in node.markers.latest()])

        else:
            return json_response({"error": f"Unknown tool: {name}"})

    except Exception as e:
        logger.exception(f"Error in tool {name}")
        return json_response({"error": str(e)})


async def main():
    """Run the MCP server."""
    logger.info("Starting stemtrack MCP server...")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main_entry():
    """Sync entry point for console_scripts."""
    asyncio.run(main())


if __name__ == "__main__":
    main_entry()
