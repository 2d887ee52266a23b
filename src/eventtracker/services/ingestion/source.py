"""Chain Log Source: headers and logs of the indexed chain.

``ChainLogSource`` is the interface the pipeline depends on. It exposes the
head height, headers by number or hash, and the platform contracts' logs of a
specific block. ``Web3ChainSource`` implements it over JSON-RPC; tests use an
in-memory chain.

Failures surface as ``TransientError`` subclasses so the pipeline can retry.
"""

from typing import Any, Protocol

import structlog
from web3 import AsyncWeb3
from web3.exceptions import BlockNotFound

from eventtracker.core.config import Settings
from eventtracker.services.exceptions import BlockchainConnectionError, BlockNotFoundError
from eventtracker.services.ingestion.events import BlockHeader, RawLog

logger = structlog.get_logger()


class ChainLogSource(Protocol):
    async def get_head_number(self) -> int: ...

    async def get_block_by_number(self, block_number: int) -> BlockHeader: ...

    async def get_block_by_hash(self, block_hash: str) -> BlockHeader: ...

    async def get_logs(self, block_hash: str) -> list[RawLog]: ...


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    value = str(value).lower()
    return value if value.startswith("0x") else "0x" + value


def _bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    value = str(value)
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def _to_header(block: Any) -> BlockHeader:
    return BlockHeader(
        number=int(block["number"]),
        hash=_hex(block["hash"]),
        parent_hash=_hex(block["parentHash"]),
        timestamp=int(block["timestamp"]),
    )


class Web3ChainSource:
    """ChainLogSource over an Ethereum JSON-RPC endpoint."""

    def __init__(self, w3: AsyncWeb3, contract_addresses: list[str]):
        """Initialize source.

        Args:
            w3: Async Web3 client
            contract_addresses: Contracts whose logs are indexed
        """
        self.w3 = w3
        self.contract_addresses = [AsyncWeb3.to_checksum_address(a) for a in contract_addresses]

    @classmethod
    def from_settings(cls, settings: Settings) -> "Web3ChainSource":
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.rpc_url))
        return cls(w3, settings.contract_addresses_list)

    async def get_head_number(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as e:
            logger.warning("source.head_failed", error=str(e), error_type=type(e).__name__)
            raise BlockchainConnectionError(f"Failed to fetch chain head: {e}") from e

    async def get_block_by_number(self, block_number: int) -> BlockHeader:
        return await self._get_block(block_number)

    async def get_block_by_hash(self, block_hash: str) -> BlockHeader:
        return await self._get_block(block_hash)

    async def _get_block(self, identifier: int | str) -> BlockHeader:
        try:
            block = await self.w3.eth.get_block(identifier)
        except BlockNotFound as e:
            raise BlockNotFoundError(f"Block {identifier} not found") from e
        except Exception as e:
            logger.warning(
                "source.block_failed",
                block=str(identifier),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BlockchainConnectionError(f"Failed to fetch block {identifier}: {e}") from e
        return _to_header(block)

    async def get_logs(self, block_hash: str) -> list[RawLog]:
        """Logs of the watched contracts in one block, pinned by block hash.

        Raises:
            BlockNotFoundError: The block was reorged away since its header
                was read; the sync step has to start over
            BlockchainConnectionError: Any other failure
        """
        try:
            logs = await self.w3.eth.get_logs(
                {"blockHash": block_hash, "address": self.contract_addresses}  # type: ignore[typeddict-item]
            )
        except Exception as e:
            logger.warning(
                "source.logs_failed",
                block_hash=block_hash,
                error=str(e),
                error_type=type(e).__name__,
            )
            if "unknown block" in str(e).lower() or await self._is_unknown(block_hash):
                raise BlockNotFoundError(f"Block {block_hash} is unknown to the node") from e
            raise BlockchainConnectionError(f"Failed to fetch logs of {block_hash}: {e}") from e

        return [
            RawLog(
                address=AsyncWeb3.to_checksum_address(log["address"]),
                topics=tuple(_bytes(t) for t in log["topics"]),
                data=_bytes(log["data"]),
                block_number=int(log["blockNumber"]),
                block_hash=_hex(log["blockHash"]),
                transaction_index=int(log["transactionIndex"]),
                log_index=int(log["logIndex"]),
            )
            for log in logs
            if not log.get("removed", False)
        ]

    async def _is_unknown(self, block_hash: str) -> bool:
        """Re-check a header after a failed log query."""
        try:
            await self.w3.eth.get_block(block_hash)
        except BlockNotFound:
            return True
        except Exception as e:
            # Unreachable node: report the original failure as a connection error
            logger.debug("source.recheck_failed", block_hash=block_hash, error=str(e))
            return False
        return False
