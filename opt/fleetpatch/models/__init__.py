"""
Models package for fleetpatch.

This package holds the pool database records the update engine reads and
writes (pool, repositories, hosts) and the VM view of a host built from
libvirt.
"""
