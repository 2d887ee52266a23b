"""Contract ABI utilities.

The event ABI of the platform contracts ships as JSON in this directory and is
the single source of truth for log decoding.
"""

import json
from functools import lru_cache
from pathlib import Path

from eth_utils.abi import event_abi_to_log_topic


def get_contract_abi(contract_name: str = "EventTracker") -> list[dict]:
    """Load contract ABI from package resources.

    Args:
        contract_name: Name of the ABI file without extension (default: "EventTracker")

    Returns:
        ABI as list of function/event descriptors

    Raises:
        FileNotFoundError: If ABI file doesn't exist for the specified contract
    """
    abi_path = Path(__file__).parent / f"{contract_name}.json"

    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path}")

    with open(abi_path) as f:
        return json.load(f)


@lru_cache(maxsize=None)
def get_event_abis(contract_name: str = "EventTracker") -> dict[bytes, dict]:
    """Map topic0 (keccak256 of the event signature) to its event ABI entry."""
    return {
        event_abi_to_log_topic(entry): entry
        for entry in get_contract_abi(contract_name)
        if entry.get("type") == "event"
    }


def event_topic(event_name: str, contract_name: str = "EventTracker") -> bytes:
    """Return topic0 for an event by name.

    Raises:
        KeyError: If the ABI declares no such event
    """
    for topic, entry in get_event_abis(contract_name).items():
        if entry["name"] == event_name:
            return topic
    raise KeyError(event_name)
