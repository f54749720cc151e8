"""Role-specific steps and the complete step plans."""
import logging
from datetime import datetime
from typing import List

from ..models import Role
from .bootstrap import bootstrap_steps
from .context import HostContext
from .firewall import FirewallPolicy, FirewallPolicyError
from .hardening import hardening_steps
from .steps import ProvisioningStep, StepFailed

logger = logging.getLogger("swarmctl.roles")

DOKPLOY_DIR = "/etc/dokploy"
SETUP_LOG = "/var/lib/manual-init/setup.log"
COMPLETION_MARKERS = (
    "/var/lib/cloud/instance/boot-finished",
    "/var/lib/manual-init/boot-finished",
)


def firewall_step(ctx: HostContext, role: Role) -> ProvisioningStep:
    policy = FirewallPolicy(role, ctx.config)

    def apply_policy():
        try:
            policy.apply(ctx.runner)
        except FirewallPolicyError as e:
            raise StepFailed(str(e)) from e

    return ProvisioningStep("firewall", apply_policy, lambda: policy.is_applied(ctx.runner),
                            description=f"configuring firewall for {role}")


def docker_config_steps(ctx: HostContext) -> List[ProvisioningStep]:
    user = ctx.username
    docker_dir = f"{ctx.home}/.docker"
    bashrc = f"{ctx.home}/.bashrc"
    export_line = f'export DOCKER_CONFIG="{docker_dir}"'

    def docker_dir_ok() -> bool:
        return ctx.files.is_dir(docker_dir) and ctx.files.mode(docker_dir) == 0o700

    return [
        ProvisioningStep("docker-config-directory",
                         lambda: ctx.files.ensure_dir(docker_dir, mode=0o700, owner=user),
                         docker_dir_ok, description=f"creating {docker_dir}"),
        ProvisioningStep("docker-config-env",
                         lambda: ctx.files.append_line(bashrc, export_line, owner=user),
                         lambda: export_line in ctx.files.read_text(bashrc).splitlines(),
                         fatal=False, description=f"exporting DOCKER_CONFIG in {bashrc}"),
    ]


def control_plane_steps(ctx: HostContext) -> List[ProvisioningStep]:
    user = ctx.username

    def dokploy_dir_ok() -> bool:
        return ctx.files.is_dir(DOKPLOY_DIR) and ctx.files.mode(DOKPLOY_DIR) == 0o775

    return [
        firewall_step(ctx, Role.CONTROL_PLANE),
        ProvisioningStep("dokploy-directory",
                         lambda: ctx.files.ensure_dir(DOKPLOY_DIR, mode=0o775, owner=user),
                         dokploy_dir_ok, description=f"creating {DOKPLOY_DIR}"),
    ] + docker_config_steps(ctx)


def worker_steps(ctx: HostContext) -> List[ProvisioningStep]:
    return [firewall_step(ctx, Role.WORKER)] + docker_config_steps(ctx)


def completion_markers_step(ctx: HostContext, stage: str) -> ProvisioningStep:
    """Marker files that tell external callers provisioning finished.

    ``setup.log`` gets one line per completed stage; the step is done once
    its latest line names ``stage``.
    """
    suffix = f": {stage} setup completed via swarmctl"

    def stage_logged() -> bool:
        lines = ctx.files.read_text(SETUP_LOG).strip().splitlines()
        return bool(lines) and lines[-1].endswith(suffix)

    def write_markers():
        for marker in COMPLETION_MARKERS:
            ctx.files.touch(marker)
        timestamp = datetime.now().strftime("%a %b %d %H:%M:%S %Y")
        ctx.files.append_line(SETUP_LOG, f"{timestamp}{suffix}")

    return ProvisioningStep(
        "completion-markers",
        write_markers,
        lambda: all(ctx.files.exists(m) for m in COMPLETION_MARKERS) and stage_logged(),
        fatal=False,
        description="writing completion markers",
    )


def hardening_plan(ctx: HostContext) -> List[ProvisioningStep]:
    return hardening_steps(ctx) + [completion_markers_step(ctx, "hardening")]


def bootstrap_plan(ctx: HostContext) -> List[ProvisioningStep]:
    return bootstrap_steps(ctx) + [completion_markers_step(ctx, "bootstrap")]


def role_plan(role: Role, ctx: HostContext) -> List[ProvisioningStep]:
    """Full plan for a role: hardening, Docker bootstrap, then role steps."""
    role = Role(role)
    role_specific = control_plane_steps(ctx) if role == Role.CONTROL_PLANE else worker_steps(ctx)
    return (hardening_steps(ctx)
            + bootstrap_steps(ctx)
            + role_specific
            + [completion_markers_step(ctx, str(role))])
