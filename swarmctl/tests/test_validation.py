import pytest

from swarmctl.config import DEFAULTS
from swarmctl.models import Role
from swarmctl.validation import (
    is_positive_int,
    is_valid_ipv4,
    is_valid_max_startups,
    is_valid_port,
    is_valid_ssh_key,
    is_valid_username,
    validate_settings,
)

KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIJd2Zq admin@laptop"


@pytest.mark.parametrize("value,expected", [
    ("192.168.1.1", True),
    ("0.0.0.0", True),
    ("255.255.255.255", True),
    ("256.1.1.1", False),
    ("1.2.3", False),
    ("a.b.c.d", False),
    ("1.2.3.4 ", False),
    ("", False),
])
def test_ipv4(value, expected):
    assert is_valid_ipv4(value) is expected


@pytest.mark.parametrize("value,expected", [
    ("1", True),
    ("22", True),
    ("65535", True),
    ("0", False),
    ("65536", False),
    ("-1", False),
    ("22a", False),
    ("", False),
])
def test_port(value, expected):
    assert is_valid_port(value) is expected


def test_positive_int_accepts_zero_and_rejects_signs():
    assert is_positive_int("0")
    assert is_positive_int("3600")
    assert not is_positive_int("-5")
    assert not is_positive_int("+5")
    assert not is_positive_int("1.5")
    assert not is_positive_int("")


@pytest.mark.parametrize("value,expected", [
    ("ubuntu", True),
    ("_svc", True),
    ("deploy-user_1", True),
    ("a" * 32, True),
    ("a" * 33, False),
    ("Admin", False),
    ("1user", False),
    ("bad user", False),
    ("", False),
])
def test_username(value, expected):
    assert is_valid_username(value) is expected


def test_ssh_key_requires_known_type_and_whitespace():
    assert is_valid_ssh_key(KEY)
    assert is_valid_ssh_key("ssh-rsa AAAAB3NzaC1yc2E")
    assert not is_valid_ssh_key("ssh-ed25519")
    assert not is_valid_ssh_key("ssh-dss AAAAB3NzaC1kc3M")
    assert not is_valid_ssh_key("")


def test_max_startups():
    assert is_valid_max_startups("10:30:60")
    assert is_valid_max_startups("10")
    assert not is_valid_max_startups("10:30")
    assert not is_valid_max_startups("10:30:60\nPermitRootLogin yes")


def test_defaults_are_valid():
    report = validate_settings(DEFAULTS)
    assert report.ok, report.errors


def test_all_errors_are_collected():
    settings = dict(DEFAULTS, SSH_PORT="70000", USERNAME="Root", FAIL2BAN_BANTIME="-1")
    report = validate_settings(settings)
    assert report.error_count == 3
    assert {r.name for r in report.errors} == {"SSH_PORT", "USERNAME", "FAIL2BAN_BANTIME"}


def test_worker_requires_control_plane_ip():
    settings = dict(DEFAULTS, PERSONAL_SSH_KEY=KEY)
    report = validate_settings(settings, role=Role.WORKER)
    assert [r.name for r in report.errors] == ["CONTROL_PLANE_IP"]

    report = validate_settings(dict(settings, CONTROL_PLANE_IP="10.0.0.5"), role=Role.WORKER)
    assert report.ok


def test_control_plane_ip_checked_when_set():
    report = validate_settings(dict(DEFAULTS, CONTROL_PLANE_IP="10.0.0.300"))
    assert [r.name for r in report.errors] == ["CONTROL_PLANE_IP"]


def test_role_requires_an_ssh_key():
    report = validate_settings(DEFAULTS, role=Role.CONTROL_PLANE)
    assert not report.ok
    assert "at least one SSH key" in report.errors[0].reason

    report = validate_settings(dict(DEFAULTS, CONTROL_PLANE_SSH_KEY=KEY), role=Role.CONTROL_PLANE)
    assert report.ok


def test_invalid_key_is_reported():
    report = validate_settings(dict(DEFAULTS, PERSONAL_SSH_KEY="not-a-key"), require_ssh_key=True)
    assert [r.name for r in report.errors] == ["PERSONAL_SSH_KEY"]


def test_report_log(caplog):
    report = validate_settings(dict(DEFAULTS, SSH_PORT="0", GRAFANA_PORT="x"))
    with caplog.at_level("INFO"):
        report.log()
    assert "Invalid SSH_PORT" in caplog.text
    assert "Invalid GRAFANA_PORT" in caplog.text
    assert "Configuration validation failed with 2 error(s)" in caplog.text
