"""
Utils package for fleetpatch.

This package contains utility functions for:
- Libvirt connection management
- Session-scoped calls from the coordinator to pool members
"""
