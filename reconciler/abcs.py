from abc import ABC, abstractmethod
from .utils import camel_to_snake

class DataProduct(ABC):
    """Folds a stream of decoded events, in ledger order, into some state."""

    @abstractmethod
    def handle(self, event):
        pass

    @property
    def name(self):
        return camel_to_snake(self.__class__.__name__)

class DataModel(ABC):

    @property
    def name(self):
        return camel_to_snake(self.__class__.__name__)


class LedgerClient(ABC):
    """
    Contract state queries and transaction submission against the governance,
    token and (optional) analytics-helper contracts.

    Per-id proposal probes raise NotFound when the id does not exist.  Anything
    else that goes wrong talking to the node is UpstreamUnavailable.
    """

    account = None

    @abstractmethod
    async def get_proposal_state(self, proposal_id): ...

    @abstractmethod
    async def get_proposal_count(self):
        """None when the governance contract has no direct count accessor."""

    @abstractmethod
    async def proposal_voter_info(self, proposal_id, account): ...

    @abstractmethod
    async def get_current_snapshot_id(self): ...

    @abstractmethod
    async def get_effective_voting_power(self, account, snapshot_id): ...

    @abstractmethod
    async def get_snapshot_metrics(self, snapshot_id): ...

    @abstractmethod
    async def total_supply(self): ...

    @abstractmethod
    async def balance_of(self, address): ...

    @abstractmethod
    async def get_proposal_analytics(self, start_id=0, end_id=100): ...

    @abstractmethod
    async def get_token_distribution_analytics(self): ...

    @abstractmethod
    async def get_voter_behavior_analytics(self, voter_limit=100): ...

    @abstractmethod
    async def get_timelock_analytics(self, transaction_limit=100): ...

    @abstractmethod
    async def calculate_governance_health_score(self): ...

    @abstractmethod
    async def block_number(self): ...

    @abstractmethod
    async def get_logs(self, address, topics, from_block, to_block): ...

    @abstractmethod
    async def submit_vote(self, proposal_id, support, gas_limit):
        """Returns the transaction hash as a 0x-prefixed hex string."""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash, timeout): ...


class IndexerClient(ABC):

    @abstractmethod
    async def token_holder_list(self, token_address): ...

    @abstractmethod
    async def token_info(self, token_address): ...
