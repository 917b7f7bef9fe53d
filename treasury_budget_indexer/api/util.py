import dataclasses
from typing import Any, Dict, Optional, Tuple

import pycardano

from .metadata.values import metadata_from_auxiliary_data


@dataclasses.dataclass
class FixedTxHashTransaction:
    """
    Substrate type because pycardano does not support fixed tx hashes
    and always computes them live, but may generate imprecise deserializations of transactions
    """

    transaction: pycardano.Transaction
    hash: str

    @property
    def transaction_body(self):
        return self.transaction.transaction_body

    @property
    def auxiliary_data(self):
        return self.transaction.auxiliary_data


@dataclasses.dataclass(frozen=True)
class ChainOutput:
    """
    An output created by a transaction, as delivered by the chain event source
    """

    address: str
    script_hash: Optional[str] = None
    amount: int = 0


@dataclasses.dataclass(frozen=True)
class ChainTransaction:
    """
    Everything the processor needs to know about a transaction.
    spent_addresses is filled by event sources that can resolve the spent inputs.
    """

    tx_hash: str
    slot: int
    block_height: Optional[int] = None
    metadata: Dict[str, Any] = dataclasses.field(default_factory=dict)
    outputs: Tuple[ChainOutput, ...] = ()
    spent_addresses: Tuple[str, ...] = ()


def output_from_pycardano(output: pycardano.TransactionOutput) -> ChainOutput:
    """
    Convert a pycardano output into the address / script hash / lovelace triple.
    """
    payment_part = output.address.payment_part
    script_hash = (
        payment_part.payload.hex()
        if isinstance(payment_part, pycardano.ScriptHash)
        else None
    )
    return ChainOutput(
        address=str(output.address),
        script_hash=script_hash,
        amount=output.amount.coin,
    )


def chain_transaction_from(
    tx: FixedTxHashTransaction, slot: int, block_height: Optional[int]
) -> ChainTransaction:
    """
    Convert a decoded transaction of a block into a ChainTransaction.
    """
    return ChainTransaction(
        tx_hash=tx.hash,
        slot=slot,
        block_height=block_height,
        metadata=metadata_from_auxiliary_data(tx.auxiliary_data),
        outputs=tuple(output_from_pycardano(o) for o in tx.transaction_body.outputs),
    )
