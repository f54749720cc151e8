"""Docker Swarm join helpers and network reachability checks.

The swarm protocol itself is left to Docker; this module only asks the
manager for a join token and waits for ports to become reachable.
"""
import logging
import socket
import time
from typing import Callable, Optional

import requests

from ..validation import is_valid_ipv4
from .shell import CommandRunner

logger = logging.getLogger("swarmctl.swarm")

PUBLIC_IP_SERVICES = (
    "https://ifconfig.me",
    "https://api.ipify.org",
    "https://icanhazip.com",
)


class SwarmError(RuntimeError):
    """Raised when a swarm operation cannot be completed."""


def get_public_ip(runner: Optional[CommandRunner] = None, timeout: float = 5) -> Optional[str]:
    """Return this host's public IPv4 address.

    Tries a few public echo services, then falls back to the first address
    reported by ``hostname -I``. Only a valid IPv4 address is returned.
    """
    for url in PUBLIC_IP_SERVICES:
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.debug("Public IP lookup via %s failed: %s", url, e)
            continue
        ip = response.text.strip()
        if is_valid_ipv4(ip):
            return ip

    runner = runner or CommandRunner()
    result = runner.run(["hostname", "-I"])
    if result.ok and result.stdout.split():
        ip = result.stdout.split()[0]
        if is_valid_ipv4(ip):
            return ip
    return None


def worker_join_command(runner: CommandRunner) -> str:
    """Ask the local swarm manager for the worker join command.

    Raises:
        SwarmError: If this node is not a swarm manager or docker fails
    """
    result = runner.run(["docker", "swarm", "join-token", "worker"])
    if not result.ok:
        detail = (result.stderr or result.stdout).strip()
        hint = "docker swarm init --advertise-addr <CONTROL_PLANE_IP>"
        if "not a swarm manager" in detail:
            ip = get_public_ip(runner)
            if ip:
                hint = f"docker swarm init --advertise-addr {ip}"
            raise SwarmError(f"This node is not a swarm manager. Initialize the swarm first: {hint}")
        raise SwarmError(f"Failed to get worker join token: {detail}")

    for line in result.stdout.splitlines():
        line = line.strip()
        if line.startswith("docker swarm join"):
            return line
    raise SwarmError(f"Unexpected output from docker swarm join-token: {result.stdout.strip()}")


def port_open(host: str, port: int, timeout: float = 1) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_port(
    host: str,
    port: int,
    timeout: int = 60,
    interval: int = 2,
    probe: Callable[[str, int], bool] = port_open,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Wait until ``host:port`` accepts TCP connections.

    Returns:
        True once reachable, False after ``timeout`` seconds
    """
    logger.info(f"⏳ Waiting for {host}:{port} to be reachable...")
    elapsed = 0
    while elapsed < timeout:
        if probe(host, port):
            logger.info(f"✅ {host}:{port} is reachable")
            return True
        sleep(interval)
        elapsed += interval

    logger.error(f"❌ {host}:{port} not reachable within {timeout}s")
    return False
