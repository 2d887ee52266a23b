"""Event decoder tests.

Tests cover:
- Decoding indexed topics and ABI-encoded data into typed payloads
- Address checksumming and bytes32 normalization
- Unknown topics reported as UnknownKind
- Malformed logs of known kinds raising SchemaMismatchError
"""

from dataclasses import replace

import pytest
from eth_utils import keccak

from eventtracker.services.exceptions import SchemaMismatchError
from eventtracker.services.ingestion.decoder import EventDecoder
from eventtracker.services.ingestion.events import EventIdentity, EventKind, UnknownKind
from fakes import (
    ALICE,
    ARTIST,
    BOB,
    encode_log,
    header,
    nft_revealed,
    project_created,
    randao_committed,
    sale_cancelled,
    secret,
    transfer,
)


@pytest.fixture
def decoder() -> EventDecoder:
    return EventDecoder()


def test_decode_project_created_with_dynamic_fields(decoder):
    """Strings and arrays in the data field decode into the payload."""
    block = header(5)
    log = encode_log(
        project_created(
            project_id=7,
            editions=100,
            price=1,
            beneficiaries=[ALICE.lower(), BOB],
            percentages=[60, 40],
        ),
        block,
        log_index=3,
        transaction_index=1,
    )

    event = decoder.decode(log)

    assert event.kind == EventKind.PROJECT_CREATED
    assert event.identity == EventIdentity(5, block.hash, 1, 3)
    payload = event.payload
    assert payload.project_id == 7
    assert payload.artist == ARTIST
    assert payload.name == "Chromie Squiggle"
    assert payload.editions == 100
    assert payload.price == 1
    assert payload.code_pointer == "ipfs://code"
    assert payload.beneficiaries == [ALICE, BOB]
    assert payload.percentages == [60, 40]
    assert payload.royalty_percentage == 5


def test_decode_event_with_only_indexed_arguments(decoder):
    """Transfer carries everything in topics; ``from`` maps to ``sender``."""
    event = decoder.decode(encode_log(transfer(42, ALICE, BOB), header(1)))

    assert event.kind == EventKind.TRANSFER
    assert event.payload.sender == ALICE
    assert event.payload.recipient == BOB
    assert event.payload.token_id == 42


def test_decode_bytes32_as_lowercase_hex(decoder):
    event = decoder.decode(encode_log(randao_committed(3, ALICE, secret(9)), header(1)))

    assert event.kind == EventKind.RANDAO_COMMITTED
    assert event.payload.round_id == 3
    assert event.payload.commit_hash == "0x" + keccak(secret(9)).hex()


def test_decode_token_uri_alias(decoder):
    event = decoder.decode(encode_log(nft_revealed(4, "ipfs://bafy/4.json"), header(1)))

    assert event.payload.token_id == 4
    assert event.payload.token_uri == "ipfs://bafy/4.json"


def test_unknown_topic_is_reported_not_raised(decoder):
    log = encode_log(sale_cancelled(1), header(1))
    approval = keccak(text="Approval(address,address,uint256)")
    foreign = replace(log, topics=(approval,) + log.topics[1:])

    result = decoder.decode(foreign)

    assert isinstance(result, UnknownKind)
    assert result.topic0 == "0x" + approval.hex()
    assert result.address == log.address


def test_log_without_topics_is_unknown(decoder):
    log = replace(encode_log(sale_cancelled(1), header(1)), topics=())

    result = decoder.decode(log)

    assert isinstance(result, UnknownKind)
    assert result.topic0 is None


def test_truncated_data_raises_schema_mismatch(decoder):
    log = encode_log(project_created(), header(1))

    with pytest.raises(SchemaMismatchError, match="ProjectCreated"):
        decoder.decode(replace(log, data=log.data[:40]))


def test_wrong_topic_count_raises_schema_mismatch(decoder):
    log = encode_log(transfer(1, ALICE, BOB), header(1))

    with pytest.raises(SchemaMismatchError, match="topics"):
        decoder.decode(replace(log, topics=log.topics[:3]))


def test_unexpected_data_on_indexed_only_event_raises(decoder):
    log = encode_log(sale_cancelled(1), header(1))

    with pytest.raises(SchemaMismatchError):
        decoder.decode(replace(log, data=b"\x00" * 32))

