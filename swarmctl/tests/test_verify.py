import pytest

from swarmctl.models import Role
from swarmctl.modules.roles import role_plan
from swarmctl.modules.steps import StepRunner
from swarmctl.modules.verify import Verifier


def provisioned(make_context, config, role):
    ctx = make_context(config)
    StepRunner(role_plan(role, ctx)).run()
    return make_context(config)


@pytest.mark.parametrize("role", [Role.CONTROL_PLANE, Role.WORKER])
def test_provisioned_host_passes(make_context, config, role):
    report = Verifier(provisioned(make_context, config, role), role).run()
    failed = [r.name for r in report.results if not r.passed]
    assert failed == []
    assert report.ok


def test_verification_is_read_only(make_context, config, fake_system):
    ctx = provisioned(make_context, config, Role.WORKER)
    fake_system.calls.clear()
    Verifier(ctx, Role.WORKER).run()
    assert fake_system.mutations == []


def test_bare_host_fails(ctx):
    report = Verifier(ctx, Role.CONTROL_PLANE).run()
    assert not report.ok
    assert report.passed + report.failed == report.total


def test_worker_with_public_web_port_fails(make_context, config, fake_system):
    ctx = provisioned(make_context, config, Role.WORKER)
    fake_system.ufw_rules.append(["allow", "443/tcp"])
    report = Verifier(ctx, Role.WORKER).run()
    failed = [r.name for r in report.results if not r.passed]
    assert failed == ["No public web ports open"]


def test_ssh_port_needs_its_own_rule(make_context, config, fake_system):
    ctx = provisioned(make_context, config, Role.WORKER)
    fake_system.ufw_rules = [
        ["allow", "2222/tcp"] if rule[1:2] == ["22/tcp"] else rule for rule in fake_system.ufw_rules
    ]
    report = Verifier(ctx, Role.WORKER).run()
    assert [r.name for r in report.results if not r.passed] == ["SSH port 22 allowed"]


def test_docker_api_allowed_fails(make_context, config, fake_system):
    ctx = provisioned(make_context, config, Role.CONTROL_PLANE)
    fake_system.ufw_rules.insert(0, ["allow", "2375/tcp"])
    report = Verifier(ctx, Role.CONTROL_PLANE).run()
    assert [r.name for r in report.results if not r.passed] == ["Docker TCP API ports 2375/2376 not allowed"]


def test_worker_with_dokploy_directory_fails(make_context, config):
    ctx = provisioned(make_context, config, Role.WORKER)
    ctx.files.ensure_dir("/etc/dokploy")
    report = Verifier(ctx, Role.WORKER).run()
    assert [r.name for r in report.results if not r.passed] == ["No /etc/dokploy directory on worker"]


def test_results_are_logged(make_context, config, caplog):
    ctx = provisioned(make_context, config, Role.CONTROL_PLANE)
    caplog.clear()
    with caplog.at_level("INFO"):
        report = Verifier(ctx, Role.CONTROL_PLANE).run()
    assert "✓ PASS: User 'deploy' exists" in caplog.text
    assert f"Tests passed: {report.total}/{report.total}, failed: 0" in caplog.text
