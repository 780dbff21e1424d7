import asyncio
from collections import defaultdict

import pytest

from reconciler.abcs import LedgerClient, IndexerClient
from reconciler.config import ReconcilerSettings
from reconciler.errors import NotFound, UpstreamUnavailable
from reconciler.utils import camel_to_snake

GOV = '0x1111111111111111111111111111111111111111'
TOKEN = '0x2222222222222222222222222222222222222222'
ANALYTICS = '0x3333333333333333333333333333333333333333'

ALICE = '0x00000000000000000000000000000000000000a1'
BOB = '0x00000000000000000000000000000000000000b2'
CAROL = '0x00000000000000000000000000000000000000c3'


def raise_or_return(value):
    if isinstance(value, BaseException):
        raise value
    return value


class FakeLedger(LedgerClient):
    """In-memory ledger.  Any configured value may be an exception to raise instead."""

    def __init__(self, states=None, count=None, account=None):
        self.states = dict(states or {})
        self.state_error = None
        self.count = count
        self.account = account

        self.voter_info = {}
        self.current_snapshot = 1
        self.voting_power = {}
        self.snapshot_metrics = {}
        self.supply = 0
        self.balances = {}
        self.analytics = {}
        self.head = 1_000
        self.logs = []

        self.receipt = {'status': 1, 'block_number': 1_001}
        self.submit_error = None
        self.on_submit = None
        self.submitted = []

        self.calls = defaultdict(int)
        self.log_ranges = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_proposal_state(self, proposal_id):
        self.calls['get_proposal_state'] += 1
        if self.state_error is not None:
            raise self.state_error
        if proposal_id not in self.states:
            raise NotFound(f"getProposalState({proposal_id})")
        return raise_or_return(self.states[proposal_id])

    async def get_proposal_count(self):
        return raise_or_return(self.count)

    async def proposal_voter_info(self, proposal_id, account):
        return raise_or_return(self.voter_info.get((proposal_id, account.lower()), 0))

    async def get_current_snapshot_id(self):
        return raise_or_return(self.current_snapshot)

    async def get_effective_voting_power(self, account, snapshot_id):
        return raise_or_return(self.voting_power.get((account.lower(), snapshot_id), 0))

    async def get_snapshot_metrics(self, snapshot_id):
        if snapshot_id not in self.snapshot_metrics:
            raise UpstreamUnavailable("no metrics")
        return raise_or_return(self.snapshot_metrics[snapshot_id])

    async def total_supply(self):
        return raise_or_return(self.supply)

    async def balance_of(self, address):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            return raise_or_return(self.balances.get(address.lower(), 0))
        finally:
            self.in_flight -= 1

    def _analytics(self, name):
        if name not in self.analytics:
            raise UpstreamUnavailable("No analytics helper in this deployment.")
        return raise_or_return(self.analytics[name])

    async def get_proposal_analytics(self, start_id=0, end_id=100):
        return self._analytics('proposal')

    async def get_token_distribution_analytics(self):
        return self._analytics('token')

    async def get_voter_behavior_analytics(self, voter_limit=100):
        return self._analytics('voter')

    async def get_timelock_analytics(self, transaction_limit=100):
        return self._analytics('timelock')

    async def calculate_governance_health_score(self):
        return self._analytics('health')

    async def block_number(self):
        return raise_or_return(self.head)

    async def get_logs(self, address, topics, from_block, to_block):
        self.log_ranges.append((from_block, to_block))
        return [log for log in self.logs if from_block <= log['blockNumber'] <= to_block]

    async def submit_vote(self, proposal_id, support, gas_limit):
        self.submitted.append((proposal_id, support, gas_limit))
        if self.on_submit:
            self.on_submit(proposal_id)
        if self.submit_error is not None:
            raise self.submit_error
        return '0x' + 'ab' * 32

    async def wait_for_receipt(self, tx_hash, timeout):
        receipt = raise_or_return(self.receipt)
        return dict(receipt, tx_hash=tx_hash)


class FakeEventLogFetcher:
    """Serves already-decoded events, filtered the way the real fetcher's topics would."""

    def __init__(self, events=None):
        self.events = defaultdict(list)
        for (address, signature), evs in (events or {}).items():
            self.events[(address.lower(), signature)].extend(evs)
        self.error = None
        self.calls = []

    def add(self, address, signature, event):
        self.events[(address.lower(), signature)].append(event)

    async def fetch(self, address, signature, indexed=None, from_block=None, to_block=None):

        self.calls.append((address, signature, indexed, from_block, to_block))

        if self.error is not None:
            raise self.error

        out = []
        for event in self.events[(address.lower(), signature)]:
            if any(event.get(camel_to_snake(k)) != v for k, v in (indexed or {}).items() if v is not None):
                continue
            block = event.get('block_number', 0)
            if from_block is not None and block < from_block:
                continue
            if to_block is not None and block > to_block:
                continue
            out.append(event)

        return sorted(out, key=lambda e: (e.get('block_number', 0), e.get('log_index', 0)))


class FakeIndexer(IndexerClient):

    def __init__(self, holder_list=None, info=None):
        self.holder_list = holder_list if holder_list is not None else UpstreamUnavailable("no list")
        self.info = info if info is not None else UpstreamUnavailable("no info")
        self.closed = False

    async def token_holder_list(self, token_address):
        return raise_or_return(self.holder_list)

    async def token_info(self, token_address):
        return raise_or_return(self.info)

    async def close(self):
        self.closed = True


def vote_cast(proposal_id, voter, support, weight, block_number, log_index=0):
    return {'block_number': block_number, 'transaction_index': 0, 'log_index': log_index,
            'proposal_id': proposal_id, 'voter': voter, 'support': support, 'voting_power': weight,
            'signature': 'VoteCast(uint256,address,uint8,uint256)'}


def transfer(frm, to, value, block_number, log_index=0):
    return {'block_number': block_number, 'transaction_index': 0, 'log_index': log_index,
            'from': frm, 'to': to, 'value': value,
            'signature': 'Transfer(address,address,uint256)'}


@pytest.fixture
def settings():
    return ReconcilerSettings()


@pytest.fixture
def deployment():
    return {'chain_id': 11155111,
            'gov': {'address': GOV},
            'token': {'address': TOKEN},
            'analytics': {'address': ANALYTICS},
            'start_block': 0}


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def fetcher():
    return FakeEventLogFetcher()
