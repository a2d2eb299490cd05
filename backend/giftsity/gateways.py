# Overview: The three deployable gateways and the roles each one admits.

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Gateway:
    name: str
    allowed_roles: frozenset
    default_port: int


MAIN = Gateway("main", frozenset({"customer", "admin"}), 5000)
SELLER = Gateway("seller", frozenset({"seller", "admin"}), 5001)
CORPORATE = Gateway("corporate", frozenset({"corporate", "admin"}), 5002)

GATEWAYS = {gateway.name: gateway for gateway in (MAIN, SELLER, CORPORATE)}


def get_gateway(name: str) -> Gateway:
    try:
        return GATEWAYS[name]
    except KeyError:
        raise ValueError(f"Unknown service '{name}'. Must be one of: {', '.join(sorted(GATEWAYS))}")


def role_allowed(service: str, role: str) -> bool:
    return role in get_gateway(service).allowed_roles
