"""Run-on requirements - decide whether a scenario or test applies to the connected deployment"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .constants import TopologyTypes


def parse_version(text: str) -> Tuple[int, ...]:
    parts = [int(part) for part in str(text).split('.') if part.isdigit()]
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts[:3])


TOPOLOGY_NAMES = {
    TopologyTypes.SINGLE: "single",
    TopologyTypes.REPLICA_SET_WITH_PRIMARY: "replicaset",
    TopologyTypes.REPLICA_SET_NO_PRIMARY: "replicaset",
    TopologyTypes.SHARDED: "sharded",
    TopologyTypes.LOAD_BALANCED: "load-balanced",
}


@dataclass
class ServerInfo:
    """What the requirements are checked against."""
    version: Tuple[int, ...] = (0, 0, 0)
    topology: str = "single"
    serverless: bool = False
    auth_enabled: bool = False
    auth_mechanism: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    csfle: bool = False


class RunOnRequirementsMatcher:
    """A list of requirements is satisfied when any one of them is."""

    def __init__(self, server: ServerInfo):
        self.server = server

    def satisfied(self, requirements: Optional[List[Dict[str, Any]]]) -> bool:
        if not requirements:
            return True
        return any(self.requirement_satisfied(requirement) for requirement in requirements)

    def requirement_satisfied(self, requirement: Dict[str, Any]) -> bool:
        server = self.server

        if "minServerVersion" in requirement and parse_version(requirement["minServerVersion"]) > server.version:
            return False
        if "maxServerVersion" in requirement and parse_version(requirement["maxServerVersion"]) < server.version:
            return False

        topologies = requirement.get("topologies")
        if topologies:
            allowed = set(topologies)
            if "sharded" in allowed:
                allowed.add("sharded-replicaset")
            if server.topology not in allowed:
                return False

        serverless = requirement.get("serverless", "allow")
        if serverless == "require" and not server.serverless:
            return False
        if serverless == "forbid" and server.serverless:
            return False

        for name, value in requirement.get("serverParameters", {}).items():
            if server.parameters.get(name) != value:
                return False

        if "auth" in requirement:
            if bool(requirement["auth"]) != server.auth_enabled:
                return False
            mechanism = requirement.get("authMechanism")
            if requirement["auth"] and mechanism and mechanism != server.auth_mechanism:
                return False

        if requirement.get("csfle") and not server.csfle:
            return False

        return True
