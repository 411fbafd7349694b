"""
Resident VM records.

The update engine only needs to know, for each VM on a host, whether it is
the control domain, what power state it is in and whether a device model
(emulator process) currently backs it.
"""

RUNNING = 'running'
PAUSED = 'paused'
HALTED = 'halted'
SUSPENDED = 'suspended'

CONTROL_DOMAIN_NAME = 'Domain-0'


def make_vm_record(uuid, name, power_state, is_control_domain=False, has_device_model=False):
    """Builds the VM record hosts report to the coordinator."""
    return {
        'uuid': uuid,
        'name': name,
        'power_state': power_state,
        'is_control_domain': is_control_domain,
        'has_device_model': has_device_model,
    }


def needs_device_model_restart(record):
    """True for a non-control VM currently backed by a device model."""
    return not record.get('is_control_domain') and bool(record.get('has_device_model'))
