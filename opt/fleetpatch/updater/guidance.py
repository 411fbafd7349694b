"""
Guidance evaluation and validation.

A guidance is a remediation action required after updates are applied.
Only a handful of guidance combinations can be executed by the
orchestrator; they are enumerated once in GUIDANCE_ACTIONS, keyed by the
sorted guidance names, and mapped to the ordered action sequence that
carries them out.
"""

import enum
import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..errors import InvalidGuidanceCombination

logger = logging.getLogger(__name__)


class Guidance(enum.Enum):
    REBOOT_HOST = 'RebootHost'
    EVACUATE_HOST = 'EvacuateHost'
    RESTART_DEVICE_MODEL = 'RestartDeviceModel'
    RESTART_TOOLSTACK = 'RestartToolstack'

    @classmethod
    def of_string(cls, value: str) -> 'Guidance':
        """Parse a guidance name as found in update-info documents."""
        return cls(value.strip())

    def __str__(self) -> str:
        return self.value


class GuidanceKind(enum.Enum):
    # Applied right after the updates (this is what gets executed)
    RECOMMENDED = 'recommended'
    # Required eventually; computed for reports only
    ABSOLUTE = 'absolute'


# --- Actions executed for a guidance set ---
REBOOT_HOST = 'reboot_host'
RESTART_DEVICE_MODELS = 'restart_device_models'
# Evacuation already restarted the device models, unless the host had
# nowhere to evacuate its VMs to.
RESTART_DEVICE_MODELS_IF_SOLE_HOST = 'restart_device_models_if_sole_host'
RESTART_TOOLSTACK = 'restart_toolstack'

GuidanceKey = Tuple[str, ...]


def canonical_key(guidances: Iterable[Guidance]) -> GuidanceKey:
    """Return the order-independent lookup key of a guidance collection."""
    return tuple(sorted({g.value for g in guidances}))


def _key(*guidances: Guidance) -> GuidanceKey:
    return canonical_key(guidances)


GUIDANCE_ACTIONS: Dict[GuidanceKey, Tuple[str, ...]] = {
    _key(): (),
    _key(Guidance.REBOOT_HOST): (REBOOT_HOST,),
    # Evacuation is done by the caller before the updates are applied
    _key(Guidance.EVACUATE_HOST): (),
    _key(Guidance.RESTART_DEVICE_MODEL): (RESTART_DEVICE_MODELS,),
    _key(Guidance.RESTART_TOOLSTACK): (RESTART_TOOLSTACK,),
    _key(Guidance.EVACUATE_HOST, Guidance.RESTART_TOOLSTACK): (RESTART_TOOLSTACK,),
    _key(Guidance.RESTART_DEVICE_MODEL, Guidance.RESTART_TOOLSTACK): (
        RESTART_DEVICE_MODELS,
        RESTART_TOOLSTACK,
    ),
    _key(Guidance.RESTART_DEVICE_MODEL, Guidance.EVACUATE_HOST): (
        RESTART_DEVICE_MODELS_IF_SOLE_HOST,
    ),
    _key(Guidance.EVACUATE_HOST, Guidance.RESTART_TOOLSTACK, Guidance.RESTART_DEVICE_MODEL): (
        RESTART_DEVICE_MODELS_IF_SOLE_HOST,
        RESTART_TOOLSTACK,
    ),
}


def assert_valid(guidances: Iterable[Guidance], host: Optional[str] = None) -> None:
    """
    Check that a guidance set is one the orchestrator knows how to execute.

    Args:
        guidances: The guidance set (order and duplicates are ignored)
        host: Host the guidances were evaluated for, used in the error

    Raises:
        InvalidGuidanceCombination: if the set is not a legal combination
    """
    key = canonical_key(guidances)
    if key not in GUIDANCE_ACTIONS:
        logger.error(f"Found wrong guidance(s) for host ref='{host}': {';'.join(key)}")
        raise InvalidGuidanceCombination(host, key)


def actions_for(guidances: Iterable[Guidance], host: Optional[str] = None) -> Tuple[str, ...]:
    """Return the ordered action sequence executing a legal guidance set."""
    assert_valid(guidances, host=host)
    return GUIDANCE_ACTIONS[canonical_key(guidances)]


def evaluate(updates_info, updates, kind: GuidanceKind) -> FrozenSet[Guidance]:
    """
    Compute the guidance set implied by a list of applied updates.

    Args:
        updates_info: Mapping of update id to UpdateInfo
        updates: Iterable of Update records
        kind: Which guidances to collect (recommended or absolute)

    Returns:
        frozenset: The union of the guidances of the updates' UpdateInfo
        entries; a set containing RebootHost is reduced to {RebootHost}.
    """
    result = set()
    for update in updates:
        info = updates_info.get(update.update_id) if update.update_id else None
        if info is None:
            continue
        result.update(info.guidances(kind))

    if Guidance.REBOOT_HOST in result:
        return frozenset([Guidance.REBOOT_HOST])
    return frozenset(result)


def to_json(guidances: Iterable[Guidance]) -> List[str]:
    """Render a guidance set as a sorted list of names."""
    return list(canonical_key(guidances))
