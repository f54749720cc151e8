from . import firewall, provision, swarm, validate, verify

__all__ = ['firewall', 'provision', 'swarm', 'validate', 'verify']
