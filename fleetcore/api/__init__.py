"""HTTPS/SSE control API."""

from fleetcore.api.server import ApiServer, parse_command_params, parse_query

__all__ = ["ApiServer", "parse_command_params", "parse_query"]
