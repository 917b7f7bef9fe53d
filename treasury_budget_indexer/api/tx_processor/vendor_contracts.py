import logging
from typing import Iterable, List, Optional, Sequence

from .address_registry import AddressRegistry
from .to_db import add_vendor_contract, find_milestone, find_vendor_contract
from ..db_models import Milestone, Project, VendorContract
from ..metrics import IndexingMetrics
from ..util import ChainOutput, ChainTransaction

_LOGGER = logging.getLogger(__name__)


class VendorContractExtractor:
    """
    Discovers vendor contracts in the outputs of fund transactions: every
    output address that is not the treasury address belongs to a vendor contract.
    """

    def __init__(
        self,
        registry: AddressRegistry,
        metrics: Optional[IndexingMetrics] = None,
    ):
        self.registry = registry
        self.metrics = metrics

    @property
    def treasury_address(self) -> str:
        return self.registry.treasury_address

    def vendor_outputs(self, tx: ChainTransaction) -> List[ChainOutput]:
        """
        The outputs of the transaction that pay to something other than the treasury.
        """
        return [
            output
            for output in tx.outputs
            if output.address and output.address != self.treasury_address
        ]

    def extract(self, tx: ChainTransaction, project: Project) -> List[VendorContract]:
        """
        Store a VendorContract for every vendor address of the transaction that
        is not known yet. Returns the contracts of all vendor addresses, new or not.
        The durable store decides what is known, not the registry.
        """
        contracts = {}
        for output in self.vendor_outputs(tx):
            if output.address in contracts:
                continue
            contract, created = add_vendor_contract(
                output.address, output.script_hash, project, tx.tx_hash
            )
            if created:
                _LOGGER.info(
                    f"Discovered vendor contract {output.address} for project "
                    f"{project.identifier} in transaction {tx.tx_hash}"
                )
                if self.metrics is not None:
                    self.metrics.vendor_contracts_discovered.inc()
            elif contract.project_id != project.id:
                _LOGGER.warning(
                    f"Vendor contract {output.address} already belongs to project "
                    f"{contract.project_id}, not re-assigning it to {project.identifier}"
                )
            contracts[output.address] = contract
        if not contracts:
            _LOGGER.debug(f"No vendor contract outputs in transaction {tx.tx_hash}")
        return list(contracts.values())

    def register(self, contracts: Iterable[VendorContract]):
        """
        Start watching the given vendor contracts.
        """
        for contract in contracts:
            self.registry.register(contract.payment_address, contract.script_hash)

    def project_for_outputs(self, tx: ChainTransaction) -> Optional[Project]:
        """
        The project owning the first known vendor contract the transaction pays to.
        """
        for output in tx.outputs:
            if not self.registry.is_tracked(output.address):
                continue
            contract = find_vendor_contract(output.address)
            if contract is not None:
                return contract.project
        return None


class MilestoneAmountExtractor:
    """
    Assigns the lovelace of the vendor outputs of a fund transaction to the
    funded milestones: the n-th vendor output funds the n-th milestone of the event.
    """

    def __init__(self, vendor_extractor: VendorContractExtractor):
        self.vendor_extractor = vendor_extractor

    def extract_amounts(
        self, tx: ChainTransaction, project: Project, milestone_keys: Sequence[str]
    ) -> List[Milestone]:
        outputs = self.vendor_extractor.vendor_outputs(tx)
        if len(outputs) < len(milestone_keys):
            _LOGGER.debug(
                f"Transaction {tx.tx_hash} funds {len(milestone_keys)} milestones "
                f"with {len(outputs)} vendor outputs"
            )
        updated = []
        for key, output in zip(milestone_keys, outputs):
            milestone = find_milestone(project, key)
            if milestone is None:
                continue
            milestone.amount_lovelace = output.amount
            milestone.save()
            updated.append(milestone)
        return updated
