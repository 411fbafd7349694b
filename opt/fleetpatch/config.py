"""
Static configuration constants for fleetpatch.

Values that operators may change live in JSON files handled by
config_loader; the constants here are fixed by the pool protocol.
"""

# --- Pool fan-out ---
# Maximum number of per-host operations in flight at once
CAPACITY_IN_PARALLEL = 16

# --- Member-internal endpoints ---
GET_HOST_UPDATES_URI = '/updates'
APPLY_HOST_UPDATES_URI = '/updates/apply'
HOST_AGENT_URI = '/api/host'

# --- Coordinator pool API, guarded by API keys ---
POOL_API_URIS = ('/api/repositories', '/api/pool', '/api/hosts')

# --- Coordinator repository endpoint ---
GET_REPOSITORY_URI = '/repository/'

# Cookie carrying the pool session token on member-internal calls
SESSION_COOKIE = 'session_id'

# --- Repository metadata layout ---
REPODATA_DIR = 'repodata'
REPOMD_XML = 'repomd.xml'
UPDATEINFO_MDTYPE = 'updateinfo'
UPDATEINFO_SUFFIX = '-updateinfo.xml.gz'

# --- Service ---
API_HOST = '0.0.0.0'
API_PORT = 443
