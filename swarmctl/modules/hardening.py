"""Server hardening stage: user, SSH and fail2ban.

Every role starts with these steps.
"""
import glob
import logging
import re
from typing import List

from .context import HostContext
from .steps import ProvisioningStep, StepFailed

logger = logging.getLogger("swarmctl.hardening")

SECURITY_PACKAGES = ["fail2ban", "ufw", "vim", "software-properties-common"]
USER_GROUPS = ["users", "sudo"]

SSHD_HARDENING_PATH = "/etc/ssh/sshd_config.d/ssh-hardening.conf"
FAIL2BAN_JAIL_PATH = "/etc/fail2ban/jail.local"
# files whose contents a running service must have been restarted with
SSHD_CONFIGS = (SSHD_HARDENING_PATH,)
FAIL2BAN_CONFIGS = (FAIL2BAN_JAIL_PATH,)
APT_SOURCES = ["/etc/apt/sources.list", "/etc/apt/sources.list.d/*.list", "/etc/apt/sources.list.d/*.sources"]

# cloud-config images ship this placeholder until real keys are installed
AUTHORIZED_KEYS_PLACEHOLDER = "# SSH keys should be managed via cloud-config"

_UNIVERSE_LIST_RE = re.compile(r"^deb .*ubuntu.*universe", re.MULTILINE)
_UNIVERSE_DEB822_RE = re.compile(r"^Components:.*\buniverse\b", re.MULTILINE)


def render_sshd_hardening(config) -> str:
    return f"""PermitRootLogin no
PasswordAuthentication no
Port {config.ssh_port}
KbdInteractiveAuthentication no
ChallengeResponseAuthentication no
MaxAuthTries {config.ssh_max_auth_tries}
AllowTcpForwarding no
X11Forwarding no
AllowAgentForwarding no
AuthorizedKeysFile .ssh/authorized_keys
AllowUsers {config.username}
Protocol 2
ClientAliveInterval {config.ssh_client_alive_interval}
ClientAliveCountMax {config.ssh_client_alive_count_max}
MaxStartups {config.ssh_max_startups}
LoginGraceTime {config.ssh_login_grace_time}
"""


def render_fail2ban_jail(config) -> str:
    return f"""[sshd]
enabled = true
port = ssh,{config.ssh_port}
banaction = iptables-multiport
findtime = {config.fail2ban_findtime}
maxretry = {config.fail2ban_maxretry}
bantime = {config.fail2ban_bantime}
"""


def render_authorized_keys(config) -> str:
    """Build authorized_keys from the personal and control plane keys.

    The control plane key is added only when it differs from the personal
    key, and becomes the primary key when no personal key is set.
    """
    personal = config.personal_ssh_key
    control_plane = config.control_plane_ssh_key
    lines = []
    if personal:
        lines += ["# Personal SSH Key", personal]
        if control_plane and control_plane != personal:
            lines += ["# Control Plane SSH Key", control_plane]
    elif control_plane:
        lines += ["# Primary SSH Key (from CONTROL_PLANE_SSH_KEY)", control_plane]
    return "\n".join(lines) + "\n"


def universe_enabled(ctx: HostContext) -> bool:
    for pattern in APT_SOURCES:
        for path in glob.glob(str(ctx.files.path(pattern))):
            try:
                with open(path, encoding="utf-8", errors="replace") as f:
                    text = f.read()
            except OSError:
                continue
            if _UNIVERSE_LIST_RE.search(text) or _UNIVERSE_DEB822_RE.search(text):
                return True
    return False


def hardening_steps(ctx: HostContext) -> List[ProvisioningStep]:
    """Return the ordered hardening steps for the configured user."""
    config = ctx.config
    user = config.username
    ssh_dir = f"{ctx.home}/.ssh"
    authorized_keys = f"{ssh_dir}/authorized_keys"
    sudoers = f"/etc/sudoers.d/90-{user}"

    def enable_universe():
        logger.info("📦 Enabling 'universe' repository...")
        ctx.runner.run(["add-apt-repository", "-y", "universe"], check=True)
        ctx.runner.run(["apt-get", "update"])

    def install_packages():
        ctx.fix_dpkg()
        ctx.runner.run(["apt-get", "update"], check=True)
        if config.test_mode:
            logger.info("🧪 TEST_MODE: skipping apt upgrade to keep tests light")
        else:
            ctx.runner.run(["apt-get", "upgrade", "-y"], check=True)
        ctx.apt_install(SECURITY_PACKAGES)

    def create_user():
        ctx.runner.run(["adduser", "--disabled-password", "--gecos", "", user], check=True)
        logger.info(f"👤 User '{user}' created")

    def has_groups() -> bool:
        groups = ctx.user_groups()
        return all(g in groups for g in USER_GROUPS)

    def add_groups():
        ctx.runner.run(["usermod", "-aG", ",".join(USER_GROUPS), user], check=True)

    def write_sudoers():
        ctx.files.write_file(sudoers, f"{user} ALL=(ALL) NOPASSWD:ALL\n", mode=0o440)
        result = ctx.runner.run(["visudo", "-cf", str(ctx.files.path(sudoers))])
        if not result.ok:
            ctx.files.path(sudoers).unlink()
            raise StepFailed(f"visudo rejected {sudoers}: {result.stderr.strip()}", result.returncode)

    def set_shell():
        ctx.runner.run(["chsh", "-s", "/bin/bash", user], check=True)

    def ssh_dir_ok() -> bool:
        return ctx.files.is_dir(ssh_dir) and ctx.files.mode(ssh_dir) == 0o700

    def create_ssh_dir():
        ctx.files.ensure_dir(ssh_dir, mode=0o700, owner=user)

    def keys_ok() -> bool:
        if not ctx.files.exists(authorized_keys):
            return False
        if AUTHORIZED_KEYS_PLACEHOLDER in ctx.files.read_text(authorized_keys):
            return False
        return ctx.files.mode(authorized_keys) == 0o600

    def install_keys():
        existing = ctx.files.read_text(authorized_keys)
        if ctx.files.exists(authorized_keys) and AUTHORIZED_KEYS_PLACEHOLDER not in existing:
            logger.info("🔑 SSH keys already configured, fixing permissions only")
            ctx.files.fix_permissions(authorized_keys, 0o600, owner=user)
            return
        ctx.files.write_file(authorized_keys, render_authorized_keys(config), mode=0o600, owner=user)
        logger.info("🔑 SSH authorized keys installed")

    def write_sshd_hardening():
        ctx.files.write_file(SSHD_HARDENING_PATH, render_sshd_hardening(config), mode=0o644)
        result = ctx.runner.run(["sshd", "-t"])
        if not result.ok:
            ctx.files.path(SSHD_HARDENING_PATH).unlink()
            raise StepFailed(f"sshd rejected the hardening config: {result.stderr.strip()}", result.returncode)

    def write_jail():
        ctx.files.write_file(FAIL2BAN_JAIL_PATH, render_fail2ban_jail(config), mode=0o644)

    def fail2ban_ok() -> bool:
        if ctx.restart_needed("fail2ban", FAIL2BAN_CONFIGS):
            return False
        return ctx.services.is_enabled("fail2ban") and ctx.services.is_active("fail2ban")

    def start_fail2ban():
        if ctx.services.is_active("fail2ban"):
            if not ctx.services.is_enabled("fail2ban"):
                ctx.runner.run(["systemctl", "enable", "fail2ban"], check=True)
            result = ctx.services.restart("fail2ban")
        else:
            result = ctx.services.enable_and_start("fail2ban")
        if not result.ok:
            raise StepFailed(result.message, logs=result.logs)
        ctx.mark_restarted("fail2ban", FAIL2BAN_CONFIGS)

    def restart_ssh():
        result = ctx.services.restart("ssh")
        if not result.ok:
            raise StepFailed(result.message, logs=result.logs)
        ctx.mark_restarted("ssh", SSHD_CONFIGS)

    return [
        ProvisioningStep("universe-repository", enable_universe, lambda: universe_enabled(ctx),
                         fatal=False, description="enabling the universe apt component"),
        ProvisioningStep("security-packages", install_packages,
                         lambda: ctx.packages_installed(SECURITY_PACKAGES),
                         fatal=False, description="updating system and installing security packages"),
        ProvisioningStep("create-user", create_user, ctx.user_exists,
                         description=f"creating user '{user}'"),
        ProvisioningStep("user-groups", add_groups, has_groups,
                         description="configuring user groups"),
        ProvisioningStep("sudo-access", write_sudoers, lambda: ctx.files.exists(sudoers),
                         description="configuring passwordless sudo"),
        ProvisioningStep("login-shell", set_shell, lambda: ctx.login_shell() == "/bin/bash",
                         fatal=False, description="setting login shell to /bin/bash"),
        ProvisioningStep("ssh-directory", create_ssh_dir, ssh_dir_ok,
                         description=f"creating {ssh_dir}"),
        ProvisioningStep("authorized-keys", install_keys, keys_ok,
                         description="installing SSH authorized keys"),
        ProvisioningStep("sshd-hardening", write_sshd_hardening, lambda: ctx.files.exists(SSHD_HARDENING_PATH),
                         description="writing SSH hardening config"),
        ProvisioningStep("fail2ban-jail", write_jail, lambda: ctx.files.exists(FAIL2BAN_JAIL_PATH),
                         description="writing fail2ban SSH jail"),
        ProvisioningStep("fail2ban-service", start_fail2ban, fail2ban_ok,
                         description="starting fail2ban"),
        ProvisioningStep("ssh-restart", restart_ssh, lambda: not ctx.restart_needed("ssh", SSHD_CONFIGS),
                         description="restarting SSH to apply hardening"),
    ]
