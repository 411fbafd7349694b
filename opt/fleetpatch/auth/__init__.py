"""
Pool session package for fleetpatch.

Member-internal endpoints are reached with short-lived privileged sessions
the coordinator opens against a host right before a call and closes right
after it.
"""
