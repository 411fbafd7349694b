"""
HTTP request handlers for fleetpatch.

- update_handlers: host update reports and the pool update API
- repository_handlers: repository records, sync and mirror file serving
- host_handlers: pool membership
- system_handlers: host reboot and agent restart
- vm_actions: resident VMs and local migration
"""
