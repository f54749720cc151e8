"""Docker Engine and Compose v2 bootstrap stage."""
import json
import logging
import platform
import re
from typing import List

import requests

from .context import HostContext
from .steps import ProvisioningStep, StepFailed

logger = logging.getLogger("swarmctl.bootstrap")

BASE_PACKAGES = ["curl", "ca-certificates", "gnupg"]
DOCKER_PACKAGE = "docker.io"
COMPOSE_PACKAGES = ["docker-compose-plugin", "docker-compose-v2"]
DOCKER_NETWORK = "dokploy-network"

DAEMON_JSON_PATH = "/etc/docker/daemon.json"
DOCKER_OVERRIDE_PATH = "/etc/systemd/system/docker.service.d/override.conf"
DOCKER_CONFIGS = (DAEMON_JSON_PATH, DOCKER_OVERRIDE_PATH)
COMPOSE_PLUGIN_PATH = "/usr/local/lib/docker/cli-plugins/docker-compose"

COMPOSE_RELEASES_API = "https://api.github.com/repos/docker/compose/releases/latest"
COMPOSE_DOWNLOAD_URL = "https://github.com/docker/compose/releases/download/v{version}/docker-compose-linux-{arch}"
COMPOSE_FALLBACK_VERSION = "2.27.0"

# dockerd must only listen on the local socket
DAEMON_CONFIG = {"hosts": ["unix:///var/run/docker.sock"]}

# clear the packaged ExecStart so its -H fd:// does not conflict with daemon.json hosts
DOCKER_OVERRIDE = """[Service]
ExecStart=
ExecStart=/usr/bin/dockerd --containerd=/run/containerd/containerd.sock
"""


def render_daemon_json() -> str:
    return json.dumps(DAEMON_CONFIG, indent=2) + "\n"


def latest_compose_version(timeout: float = 10) -> str:
    """Return the latest Compose release version, or a pinned fallback."""
    try:
        response = requests.get(COMPOSE_RELEASES_API, timeout=timeout)
        response.raise_for_status()
        tag = response.json().get("tag_name", "")
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"⚠️  Could not look up latest Compose release: {e}")
        return COMPOSE_FALLBACK_VERSION
    match = re.match(r"v?(\d+\.\d+\.\d+)", tag)
    return match.group(1) if match else COMPOSE_FALLBACK_VERSION


def download_compose_plugin(ctx: HostContext, timeout: float = 120) -> None:
    """Install the Compose v2 CLI plugin from GitHub releases."""
    version = latest_compose_version()
    url = COMPOSE_DOWNLOAD_URL.format(version=version, arch=platform.machine())
    logger.info(f"⬇️  Downloading Docker Compose v{version} from {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise StepFailed(f"Failed to download Docker Compose v2: {e}") from e
    ctx.files.ensure_dir("/usr/local/lib/docker/cli-plugins", mode=0o755)
    ctx.files.write_file(COMPOSE_PLUGIN_PATH, response.content, mode=0o755)


def bootstrap_steps(ctx: HostContext) -> List[ProvisioningStep]:
    """Return the ordered Docker bootstrap steps."""
    user = ctx.username

    def docker_compose_available() -> bool:
        return ctx.runner.succeeds(["docker", "compose", "version"])

    def docker_responsive() -> bool:
        return ctx.runner.succeeds(["docker", "info"])

    def install_docker():
        ctx.fix_dpkg()
        ctx.runner.run(["apt-get", "update", "-y"], check=True)
        ctx.apt_install(BASE_PACKAGES, check=False)
        logger.info("🐳 Installing Docker Engine...")
        ctx.apt_install([DOCKER_PACKAGE])

    def write_daemon_config():
        ctx.files.ensure_dir("/etc/docker", mode=0o755)
        ctx.files.backup(DAEMON_JSON_PATH)
        ctx.files.write_file(DAEMON_JSON_PATH, render_daemon_json(), mode=0o644)

    def write_override():
        ctx.files.ensure_dir("/etc/systemd/system/docker.service.d", mode=0o755)
        ctx.files.write_file(DOCKER_OVERRIDE_PATH, DOCKER_OVERRIDE, mode=0o644)
        result = ctx.services.daemon_reload()
        if not result.ok:
            raise StepFailed(result.message)

    def containerd_ok() -> bool:
        return ctx.services.is_enabled("containerd") and ctx.services.is_active("containerd")

    def start_containerd():
        ctx.runner.run(["systemctl", "enable", "--now", "containerd"], check=True)

    def docker_ok() -> bool:
        if ctx.restart_needed("docker", DOCKER_CONFIGS):
            return False
        return ctx.services.is_enabled("docker") and ctx.services.is_active("docker")

    def start_docker():
        ctx.runner.run(["systemctl", "enable", "docker"], check=True)
        result = ctx.services.restart("docker")
        if not result.ok:
            raise StepFailed(f"Docker failed to start: {result.message}", logs=result.logs)
        ctx.mark_restarted("docker", DOCKER_CONFIGS)
        if ctx.services.wait_until(docker_responsive, timeout=30, interval=1):
            logger.info("✅ Docker service is responsive")
        else:
            logger.warning("⚠️  Docker daemon not responsive yet; continuing.")

    def install_compose():
        for package in COMPOSE_PACKAGES:
            logger.info(f"📦 Attempting apt install of {package}...")
            if ctx.apt_install([package], check=False).ok and docker_compose_available():
                logger.info(f"✅ {package} installed via apt")
                return
        logger.info("Apt install unavailable. Falling back to manual plugin install...")
        download_compose_plugin(ctx)

    def in_docker_group() -> bool:
        return "docker" in ctx.user_groups()

    def add_docker_group():
        ctx.runner.run(["usermod", "-aG", "docker", user], check=True)
        logger.info(f"👥 Added '{user}' to the docker group; a re-login may be required")

    def network_exists() -> bool:
        return ctx.runner.succeeds(["docker", "network", "inspect", DOCKER_NETWORK])

    def create_network():
        ctx.runner.run(["docker", "network", "create", DOCKER_NETWORK], check=True)

    return [
        ProvisioningStep("docker-engine", install_docker,
                         lambda: ctx.packages_installed(BASE_PACKAGES + [DOCKER_PACKAGE]),
                         description="installing Docker Engine"),
        ProvisioningStep("docker-daemon-config", write_daemon_config,
                         lambda: ctx.files.content_matches(DAEMON_JSON_PATH, render_daemon_json()),
                         description="restricting dockerd to the Unix socket"),
        ProvisioningStep("docker-systemd-override", write_override,
                         lambda: ctx.files.content_matches(DOCKER_OVERRIDE_PATH, DOCKER_OVERRIDE),
                         description="writing docker.service override"),
        ProvisioningStep("containerd-service", start_containerd, containerd_ok,
                         fatal=False, description="starting containerd"),
        ProvisioningStep("docker-service", start_docker, docker_ok,
                         description="starting Docker"),
        ProvisioningStep("docker-compose", install_compose, docker_compose_available,
                         fatal=False, description="ensuring Docker Compose v2 is available"),
        ProvisioningStep("docker-group", add_docker_group, in_docker_group,
                         fatal=False, description=f"adding '{user}' to the docker group"),
        ProvisioningStep("docker-network", create_network, network_exists,
                         fatal=False, description=f"creating the {DOCKER_NETWORK} network"),
    ]
