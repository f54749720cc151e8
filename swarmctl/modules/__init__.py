"""
Host provisioning modules.
"""
from .context import HostContext
from .firewall import FirewallPolicy, FirewallPolicyError
from .roles import bootstrap_plan, hardening_plan, role_plan
from .shell import CommandError, CommandRunner
from .steps import ProvisioningAborted, StepRunner
from .swarm import SwarmError

__all__ = [
    'HostContext',
    'FirewallPolicy',
    'FirewallPolicyError',
    'bootstrap_plan',
    'hardening_plan',
    'role_plan',
    'CommandError',
    'CommandRunner',
    'ProvisioningAborted',
    'StepRunner',
    'SwarmError',
]
