import shlex
import stat
from pathlib import Path

import pytest

from swarmctl.config import Config
from swarmctl.modules.context import HostContext
from swarmctl.modules.host import HostFiles
from swarmctl.modules.service import ServiceController
from swarmctl.modules.shell import CommandError, CommandResult, CommandRunner

PERSONAL_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIJd2Zq admin@laptop"
CONTROL_PLANE_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIKx9Rt root@control-plane"

# argv prefixes that only inspect state
READ_ONLY_PREFIXES = (
    ("id",),
    ("getent",),
    ("dpkg-query",),
    ("systemctl", "is-active"),
    ("systemctl", "is-enabled"),
    ("systemctl", "list-unit-files"),
    ("journalctl",),
    ("ufw", "status"),
    ("ufw", "show"),
    ("docker", "info"),
    ("docker", "compose", "version"),
    ("docker", "--version"),
    ("docker", "network", "inspect"),
    ("docker", "swarm", "join-token"),
    ("docker-compose",),
    ("ss",),
    ("sudo",),
    ("hostname",),
    ("visudo",),
    ("sshd",),
)

AVAILABLE_PACKAGES = {
    "fail2ban", "ufw", "vim", "software-properties-common",
    "curl", "ca-certificates", "gnupg", "docker.io", "docker-compose-v2",
}

# services a package brings with it, installed but not started
PACKAGE_SERVICES = {
    "fail2ban": ["fail2ban"],
    "docker.io": ["docker", "containerd"],
}


def is_read_only(argv):
    return any(tuple(argv[:len(prefix)]) == prefix for prefix in READ_ONLY_PREFIXES)


class FakeSystem(CommandRunner):
    """A simulated Ubuntu host behind the CommandRunner interface.

    Models users, apt packages, systemd services, UFW and Docker state. Files
    written by commands (home directories, apt sources) land under ``root``.
    """

    def __init__(self, root):
        super().__init__()
        self.root = Path(root)
        self.calls = []
        self.users = {}
        self.groups = {"users", "sudo"}
        self.installed = set()
        self.available = set(AVAILABLE_PACKAGES)
        self.services = {"ssh": {"enabled": True, "active": True}}
        self.failing_services = set()
        # start without error but never report active
        self.stuck_services = set()
        self.ufw_active = False
        self.ufw_rules = []
        self.networks = set()
        self.swarm_manager = False
        self.sshd_valid = True
        self.sudoers_valid = True
        self.ssh_port = 22
        self.journal = ["Oct 19 07:00:00 host systemd[1]: Starting service..."]

    @property
    def mutations(self):
        return [c for c in self.calls if not is_read_only(c)]

    def run(self, argv, check=False, input=None, timeout=None):
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        handler = getattr(self, "_cmd_" + argv[0].replace("-", "_"), None)
        if handler is None:
            rc, out, err = 127, "", f"{argv[0]}: command not found"
        else:
            rc, out, err = handler(argv[1:])
        result = CommandResult(argv, rc, out, err)
        if check and not result.ok:
            raise CommandError(result)
        return result

    # --- users --------------------------------------------------------------

    def add_user(self, name, groups=(), shell="/bin/sh"):
        self.users[name] = {"groups": {name, *groups}, "shell": shell}
        home = self.root / "home" / name
        home.mkdir(parents=True, exist_ok=True)
        (home / ".bashrc").write_text("# ~/.bashrc\n")

    def _cmd_id(self, args):
        name = args[-1]
        if name not in self.users:
            return 1, "", f"id: '{name}': no such user"
        if args[0] == "-nG":
            return 0, " ".join(sorted(self.users[name]["groups"])) + "\n", ""
        return 0, "1000\n", ""

    def _cmd_getent(self, args):
        name = args[-1]
        if name not in self.users:
            return 2, "", ""
        return 0, f"{name}:x:1000:1000:,,,:/home/{name}:{self.users[name]['shell']}\n", ""

    def _cmd_adduser(self, args):
        name = args[-1]
        if name in self.users:
            return 1, "", f"adduser: The user `{name}' already exists."
        self.add_user(name)
        return 0, "", ""

    def _cmd_usermod(self, args):
        name = args[-1]
        if name not in self.users:
            return 6, "", f"usermod: user '{name}' does not exist"
        groups = args[args.index("-aG") + 1].split(",")
        for group in groups:
            if group not in self.groups:
                return 6, "", f"usermod: group '{group}' does not exist"
        self.users[name]["groups"].update(groups)
        return 0, "", ""

    def _cmd_chsh(self, args):
        self.users[args[-1]]["shell"] = args[args.index("-s") + 1]
        return 0, "", ""

    def _cmd_visudo(self, args):
        if self.sudoers_valid:
            return 0, f"{args[-1]}: parsed OK\n", ""
        return 1, "", f"{args[-1]}: syntax error near line 1"

    def _cmd_sshd(self, args):
        if self.sshd_valid:
            return 0, "", ""
        return 255, "", "/etc/ssh/sshd_config.d/ssh-hardening.conf line 3: Badly formatted port number."

    # --- packages -----------------------------------------------------------

    def _cmd_dpkg_query(self, args):
        package = args[-1]
        if package in self.installed:
            return 0, "install ok installed", ""
        return 1, "", f"dpkg-query: no packages found matching {package}"

    def _cmd_dpkg(self, args):
        return 0, "", ""

    def _cmd_apt_get(self, args):
        if "install" not in args:
            return 0, "", ""
        packages = [a for a in args[args.index("install") + 1:] if not a.startswith("-")]
        for package in packages:
            if package not in self.available:
                return 100, "", f"E: Unable to locate package {package}"
        for package in packages:
            self.installed.add(package)
            for service in PACKAGE_SERVICES.get(package, []):
                self.services.setdefault(service, {"enabled": False, "active": False})
            if package == "docker.io":
                self.groups.add("docker")
        return 0, "", ""

    def _cmd_add_apt_repository(self, args):
        sources = self.root / "etc/apt/sources.list.d"
        sources.mkdir(parents=True, exist_ok=True)
        (sources / "universe.list").write_text("deb http://archive.ubuntu.com/ubuntu noble universe\n")
        return 0, "", ""

    # --- systemd ------------------------------------------------------------

    def _cmd_systemctl(self, args):
        action = args[0]
        if action == "daemon-reload":
            return 0, "", ""
        name = args[-1].replace(".service", "")
        service = self.services.get(name)
        if action == "list-unit-files":
            return 0, (f"{name}.service enabled enabled\n" if service else ""), ""
        if service is None:
            return 5, "", f"Unit {name}.service not found."
        if action == "is-active":
            return (0 if service["active"] else 3), "", ""
        if action == "is-enabled":
            return (0 if service["enabled"] else 1), "", ""
        if action == "enable":
            service["enabled"] = True
            if "--now" in args:
                return self._start(name)
            return 0, "", ""
        if action in ("start", "restart"):
            return self._start(name)
        if action == "stop":
            service["active"] = False
            return 0, "", ""
        return 1, "", f"Unknown command verb {action}."

    def _start(self, name):
        if name in self.failing_services:
            self.services[name]["active"] = False
            return 1, "", f"Job for {name}.service failed because the control process exited with error code."
        self.services[name]["active"] = name not in self.stuck_services
        return 0, "", ""

    def _cmd_journalctl(self, args):
        return 0, "\n".join(self.journal) + "\n", ""

    def _cmd_ss(self, args):
        out = "State  Recv-Q Send-Q Local Address:Port Peer Address:Port\n"
        if self.services["ssh"]["active"]:
            out += f"LISTEN 0      128    0.0.0.0:{self.ssh_port}  0.0.0.0:*\n"
        return 0, out, ""

    def _cmd_hostname(self, args):
        return 0, "203.0.113.10 172.17.0.1 \n", ""

    # --- ufw ----------------------------------------------------------------

    def _cmd_ufw(self, args):
        if args == ["status"]:
            if not self.ufw_active:
                return 0, "Status: inactive\n", ""
            lines = ["Status: active", "", "To                         Action      From",
                     "--                         ------      ----"]
            lines += [self._status_line(rule) for rule in self.ufw_rules]
            return 0, "\n".join(lines) + "\n", ""
        if args == ["show", "added"]:
            lines = ["Added user rules (see 'ufw status' for running firewall):"]
            lines += [shlex.join(["ufw"] + rule) for rule in self.ufw_rules] or ["(None)"]
            return 0, "\n".join(lines) + "\n", ""
        if args == ["reload"]:
            return 0, ("Firewall reloaded\n" if self.ufw_active else "Firewall not enabled (skipping reload)\n"), ""
        if args == ["--force", "enable"]:
            self.ufw_active = True
            return 0, "Firewall is active and enabled on system startup\n", ""
        if args[0] in ("allow", "deny"):
            spec = args[:args.index("comment")] if "comment" in args else args
            if any(rule[:len(spec)] == spec for rule in self.ufw_rules):
                return 0, "Skipping adding existing rule\n", ""
            self.ufw_rules.append(list(args))
            return 0, "Rule added\n", ""
        return 1, "", "ERROR: Invalid syntax"

    @staticmethod
    def _status_line(rule):
        comment = ""
        if "comment" in rule:
            comment = "  # " + rule[rule.index("comment") + 1]
            rule = rule[:rule.index("comment")]
        action = rule[0].upper()
        if rule[1] == "out":
            to, action, source = rule[2], action + " OUT", "Anywhere"
        elif rule[1] == "from":
            to, source = f"{rule[6]}/{rule[8]}", rule[2]
        else:
            to, source = rule[1], "Anywhere"
        return f"{to:<27}{action:<12}{source}{comment}"

    # --- docker -------------------------------------------------------------

    def _docker_up(self):
        return "docker.io" in self.installed and self.services.get("docker", {}).get("active", False)

    def _cmd_docker(self, args):
        if "docker.io" not in self.installed:
            return 127, "", "docker: command not found"
        if args == ["--version"]:
            return 0, "Docker version 24.0.7, build 24.0.7-0ubuntu4\n", ""
        if args[:2] == ["compose", "version"]:
            if {"docker-compose-plugin", "docker-compose-v2"} & self.installed:
                return 0, "Docker Compose version 2.24.6\n", ""
            return 1, "", "docker: 'compose' is not a docker command."
        if not self._docker_up():
            return 1, "", "Cannot connect to the Docker daemon at unix:///var/run/docker.sock."
        if args == ["info"] or args == ["ps"]:
            return 0, "", ""
        if args[:2] == ["network", "inspect"]:
            if args[2] in self.networks:
                return 0, "[]\n", ""
            return 1, "", f"Error response from daemon: network {args[2]} not found"
        if args[:2] == ["network", "create"]:
            self.networks.add(args[2])
            return 0, "f1e2d3c4b5a6\n", ""
        if args[:3] == ["swarm", "join-token", "worker"]:
            if not self.swarm_manager:
                return 1, "", ("Error response from daemon: This node is not a swarm manager. "
                               "Use \"docker swarm init\" or \"docker swarm join\" to connect this node to swarm.")
            return 0, ("To add a worker to this swarm, run the following command:\n\n"
                       "    docker swarm join --token SWMTKN-1-abc123 203.0.113.10:2377\n\n"), ""
        return 1, "", "unsupported docker invocation"

    def _cmd_docker_compose(self, args):
        return 127, "", "docker-compose: command not found"

    def _cmd_sudo(self, args):
        user = args[args.index("-u") + 1]
        if "docker" in self.users.get(user, {}).get("groups", ()) and self._docker_up():
            return 0, "CONTAINER ID   IMAGE   COMMAND   CREATED   STATUS   PORTS   NAMES\n", ""
        return 1, "", "permission denied while trying to connect to the Docker daemon socket"


def take_snapshot(root):
    """Map every path under root to its mode and (for files) content."""
    root = Path(root)
    snapshot = {}
    for path in sorted(root.rglob("*")):
        mode = stat.S_IMODE(path.stat().st_mode)
        snapshot[str(path.relative_to(root))] = (mode, path.read_bytes() if path.is_file() else None)
    return snapshot


@pytest.fixture
def host_root(tmp_path):
    root = tmp_path / "host"
    root.mkdir()
    return root


@pytest.fixture
def fake_system(host_root):
    return FakeSystem(host_root)


@pytest.fixture
def config():
    return Config(
        username="deploy",
        personal_ssh_key=PERSONAL_KEY,
        control_plane_ssh_key=CONTROL_PLANE_KEY,
        control_plane_ip="10.0.0.5",
    )


@pytest.fixture
def make_context(fake_system):
    def _make(config):
        return HostContext(
            config=config,
            runner=fake_system,
            files=HostFiles(str(fake_system.root), manage_ownership=False),
            services=ServiceController(fake_system, sleep=lambda seconds: None),
        )
    return _make


@pytest.fixture
def ctx(config, make_context):
    return make_context(config)


@pytest.fixture
def snapshot():
    return take_snapshot
