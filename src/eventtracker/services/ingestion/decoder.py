"""Event decoder: raw logs to typed chain events.

Decoding is driven by the bundled event ABI. Indexed parameters come from the
log topics, the rest from the ABI-encoded data field, and the result is
validated against the payload model of the event kind.
"""

import structlog
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from eventtracker.abi import get_event_abis
from eventtracker.services.exceptions import SchemaMismatchError
from eventtracker.services.ingestion.events import (
    PAYLOAD_MODELS,
    ChainEvent,
    EventIdentity,
    EventKind,
    RawLog,
    UnknownKind,
)

logger = structlog.get_logger()

# Indexed parameters of these types are stored as their keccak hash in the topic
_HASHED_TOPIC_TYPES = ("string", "bytes")


def _is_hashed_topic(abi_type: str) -> bool:
    return abi_type in _HASHED_TOPIC_TYPES or abi_type.endswith("]") or abi_type.startswith("(")


def _decode_arguments(event_abi: dict, log: RawLog) -> dict:
    """Decode topic and data arguments into a dict keyed by ABI parameter name.

    Raises:
        ValueError: Topic count or topic size does not match the ABI
        DecodingError: Data field is not a valid encoding of the ABI types
    """
    inputs = event_abi["inputs"]
    indexed = [i for i in inputs if i.get("indexed")]
    plain = [i for i in inputs if not i.get("indexed")]

    if len(log.topics) != len(indexed) + 1:
        raise ValueError(f"expected {len(indexed) + 1} topics, got {len(log.topics)}")

    values = {}
    for param, topic in zip(indexed, log.topics[1:]):
        if len(topic) != 32:
            raise ValueError(f"topic for {param['name']} is {len(topic)} bytes, expected 32")
        if _is_hashed_topic(param["type"]):
            values[param["name"]] = "0x" + bytes(topic).hex()
        else:
            values[param["name"]] = abi_decode([param["type"]], bytes(topic))[0]

    if plain:
        decoded = abi_decode([p["type"] for p in plain], bytes(log.data))
        values.update(zip((p["name"] for p in plain), decoded))
    elif log.data:
        raise ValueError(f"unexpected {len(log.data)} data bytes")

    return values


class EventDecoder:
    """Decodes raw logs of the platform contracts."""

    def __init__(self, contract_name: str = "EventTracker"):
        self._event_abis = get_event_abis(contract_name)

    def decode(self, log: RawLog) -> ChainEvent | UnknownKind:
        """Decode one raw log.

        Args:
            log: Raw log as delivered by the Chain Log Source

        Returns:
            ChainEvent for a known event kind, UnknownKind when topic0 matches
            no event in the ABI

        Raises:
            SchemaMismatchError: topic0 matches a known kind but the log does
                not decode to that kind's shape
        """
        identity = EventIdentity.of(log)

        if not log.topics:
            return UnknownKind(identity=identity, address=log.address, topic0=None)

        topic0 = bytes(log.topics[0])
        event_abi = self._event_abis.get(topic0)
        if event_abi is None:
            return UnknownKind(identity=identity, address=log.address, topic0="0x" + topic0.hex())

        kind = EventKind(event_abi["name"])
        try:
            arguments = _decode_arguments(event_abi, log)
            payload = PAYLOAD_MODELS[kind].model_validate(arguments)
        except (DecodingError, ValueError, TypeError, OverflowError) as e:
            logger.error(
                "decoder.schema_mismatch",
                kind=kind.value,
                block_number=identity.block_number,
                transaction_index=identity.transaction_index,
                log_index=identity.log_index,
                error=str(e),
            )
            raise SchemaMismatchError(
                f"{kind.value} log at block {identity.block_number} "
                f"(tx {identity.transaction_index}, log {identity.log_index}) "
                f"does not match its ABI: {e}"
            ) from e

        return ChainEvent(identity=identity, kind=kind, payload=payload)
