import asyncio

from web3 import Web3
from sanic.log import logger as logr

from .config import (load_config, get_deployment, get_settings, resolve_rpc_url,
                     resolve_account, resolve_indexer_api_key)
from .clients import Web3LedgerClient, load_event_abis
from .clients_httpjson import EventLogFetcher
from .clients_indexer import EtherscanClient
from .data_products import (ProposalCountDiscoverer, VoteTallyReconstructor, SnapshotVotingPowerResolver,
                            HolderEnumerator, HolderCountResolver)
from .data_models import GovernanceMetricsAggregator
from .errors import ReconcilerError
from .records import AnalyticsSnapshot, HealthScore, Proposal, VoteDetails, VoteTally
from .utils import chunked
from .voting import OptimisticVoteCoordinator


class GovernanceEngine:
    """
    What the presentation layer talks to.

    Reads never raise: when nothing better is available they come back as the
    zero/seeded value and the failure is logged.  cast_vote is the exception,
    its validation errors are raised so they can be shown as-is.

    Call refresh() whenever the connected account, the connection, or the
    caller's notion of "now" (epoch) changes.  A change clears optimistic vote
    state and cancels reads still in flight.
    """

    def __init__(self, ledger, fetcher, deployment, settings, indexer=None, decimals=18):

        self.ledger = ledger
        self.fetcher = fetcher
        self.deployment = deployment
        self.settings = settings
        self.indexer = indexer

        gov_address = deployment['gov']['address'].lower()
        token_address = deployment['token']['address'].lower()

        extra_addresses = [gov_address]
        for contract in ('analytics', 'treasury'):
            address = deployment.get(contract, {}).get('address')
            if address:
                extra_addresses.append(address.lower())

        self.discoverer = ProposalCountDiscoverer(ledger, settings.proposal_id_upper_bound, settings.balance_batch_width)
        self.tallies = VoteTallyReconstructor(ledger, fetcher, gov_address, settings.allow_revote)
        self.snapshots = SnapshotVotingPowerResolver(ledger, fetcher, gov_address, settings.defaults.snapshot_id, decimals)
        self.enumerator = HolderEnumerator(ledger, fetcher, token_address, extra_addresses,
                                           settings.holder_scan_window, settings.balance_batch_width)
        self.holders = HolderCountResolver(self.enumerator, indexer, settings.defaults.holders)
        self.metrics = GovernanceMetricsAggregator(ledger, self.discoverer, self.tallies, self.holders, settings, gov_address)
        self.coordinator = OptimisticVoteCoordinator(ledger, self.snapshots, settings.vote_gas_limit,
                                                     settings.receipt_timeout, decimals)

        self.epoch = None
        self.connected = ledger.account is not None
        self.tasks = set()

    @classmethod
    def from_config(cls, config_file=None, deployment_name=None, account=None):

        config = load_config(config_file)
        deployment = get_deployment(config, deployment_name)
        settings = get_settings(config)

        url = resolve_rpc_url()
        if not url:
            raise ValueError("DAO_RECON_NODE_HTTP must be set.")

        chain_id = int(deployment['chain_id'])

        ledger = Web3LedgerClient(url, deployment, account=account or resolve_account())
        fetcher = EventLogFetcher(ledger, load_event_abis(), chain_id=chain_id,
                                  start_block=int(deployment['start_block']))

        indexer = None
        api_key = resolve_indexer_api_key()
        if api_key:
            indexer = EtherscanClient(api_key, chain_id)

        return cls(ledger, fetcher, deployment, settings, indexer=indexer)

    #################################################################################
    # Session

    @property
    def account(self):
        return self.ledger.account

    def refresh(self, epoch=None, account=None, connected=None):

        if connected is None:
            connected = account is not None

        if account:
            account = Web3.to_checksum_address(account)

        changed = (epoch != self.epoch) or (account != self.account) or (connected != self.connected)

        if not changed:
            return False

        logr.info(f"Refreshing session: epoch={epoch} account={account} connected={connected}")

        self.epoch = epoch
        self.connected = connected
        self.ledger.account = account if connected else None

        self.coordinator.reset()
        self.cancel_reads()

        return True

    def cancel_reads(self):
        for task in list(self.tasks):
            task.cancel()
        self.tasks.clear()

    async def teardown(self):

        self.cancel_reads()

        if self.indexer is not None:
            await self.indexer.close()

    async def _read(self, coro, default, label):

        task = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

        try:
            return await task
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logr.warning(f"E170191026 - {label} failed, answering with a default: {e}")
            return default

    #################################################################################
    # Reads

    async def discover_proposal_count(self):
        return await self._read(self.discoverer.discover_proposal_count(), 0, 'discover_proposal_count')

    async def proposal_stats(self):
        count, active = await self._read(self.metrics.proposal_stats(), (0, 0), 'proposal_stats')
        return {'total_proposals': count, 'active_proposals': active}

    async def get_vote_totals(self, proposal_id):
        support_hint = self.coordinator.local_vote(proposal_id)
        return await self._read(self.tallies.reconstruct_tally(proposal_id, self.account, support_hint),
                                VoteTally.zero(proposal_id),
                                f'get_vote_totals({proposal_id})')

    async def _voter_record_says_voted(self, proposal_id):
        try:
            return await self.coordinator.has_voted(proposal_id)
        except ReconcilerError as e:
            logr.warning(f"E171191026 - Voter record for {proposal_id} unavailable: {e}")
            return False

    async def _proposal(self, proposal_id, state):

        local_vote = self.coordinator.local_vote(proposal_id)

        tally, snapshot_id, has_voted = await asyncio.gather(
            self.tallies.reconstruct_tally(proposal_id, self.account, local_vote),
            self.snapshots.resolve_snapshot_id(proposal_id),
            self._voter_record_says_voted(proposal_id))

        # A logged vote counts even if the voter record lags behind.
        if self.account and not has_voted:
            has_voted = any(v.voter == self.account.lower() for v in tally.voters)

        return Proposal(id=proposal_id,
                        state=state,
                        snapshot_id=snapshot_id,
                        tally=tally,
                        has_voted=has_voted,
                        local_vote=local_vote)

    async def _list_proposals(self):

        count = await self.discoverer.discover_proposal_count()
        states = await self.discoverer.proposal_states(range(count))

        proposals = []
        for group in chunked(sorted(states), self.settings.balance_batch_width):
            proposals.extend(await asyncio.gather(*[self._proposal(pid, states[pid]) for pid in group]))

        return proposals

    async def list_proposals(self):
        return await self._read(self._list_proposals(), [], 'list_proposals')

    async def has_voted(self, proposal_id):
        return await self._read(self.coordinator.has_voted(proposal_id), False, f'has_voted({proposal_id})')

    async def resolve_snapshot_id(self, proposal_id):
        return await self._read(self.snapshots.resolve_snapshot_id(proposal_id),
                                self.settings.defaults.snapshot_id,
                                f'resolve_snapshot_id({proposal_id})')

    async def _voting_power(self, proposal_id, account):

        snapshot_id = None
        if proposal_id is not None:
            snapshot_id = await self.snapshots.resolve_snapshot_id(proposal_id)

        return await self.snapshots.get_voting_power(account, snapshot_id)

    async def get_voting_power(self, proposal_id=None, account=None):
        account = account or self.account
        if not account:
            return "0"
        return await self._read(self._voting_power(proposal_id, account), "0", 'get_voting_power')

    async def _vote_details(self, proposal_id):

        has_voted = await self.coordinator.has_voted(proposal_id)
        voting_power = await self._voting_power(proposal_id, self.account)

        support = self.coordinator.local_vote(proposal_id)
        if support is None and has_voted:
            events = await self.tallies.vote_events(proposal_id)
            support = next((e['support'] for e in reversed(events) if e.get('voter', '').lower() == self.account.lower()), None)

        return VoteDetails(has_voted=has_voted, voting_power=voting_power, support=support)

    async def get_vote_details(self, proposal_id):

        default = VoteDetails(has_voted=False, voting_power="0")

        if not self.account:
            return default

        return await self._read(self._vote_details(proposal_id), default, f'get_vote_details({proposal_id})')

    def seeded_snapshot(self):
        defaults = self.settings.defaults
        return AnalyticsSnapshot(holders=defaults.holders,
                                 total_supply=0,
                                 treasury_balance=defaults.treasury_balance,
                                 circulating_supply=0,
                                 total_proposals=0,
                                 active_proposals=0,
                                 participation_rate=defaults.participation_rate,
                                 delegation_rate=defaults.delegation_rate,
                                 proposal_success_rate=defaults.proposal_success_rate,
                                 health=HealthScore(),
                                 sources={})

    async def dashboard_stats(self):
        return await self._read(self.metrics.aggregate(self.account), self.seeded_snapshot(), 'dashboard_stats')

    async def load_analytics(self, metric):
        return await self._read(self.metrics.load_analytics(metric), None, f'load_analytics({metric})')

    #################################################################################
    # Writes

    async def cast_vote(self, proposal_id, support):
        return await self.coordinator.cast_vote(proposal_id, support)

    @property
    def voting_state(self):
        return self.coordinator.voting_state

    def vote_status(self, proposal_id):
        return self.coordinator.status(proposal_id)
