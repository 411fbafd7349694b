"""
fleetpatch - pool-wide software update orchestration.

Every pool member runs the same aiohttp service. The coordinator mirrors the
upstream repository, computes which updates each host needs and drives the
update and remediation cycle across the pool.
"""

__version__ = '1.0.0'
