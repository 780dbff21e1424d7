import asyncio

from eth_abi.abi import decode as decode_abi
from sanic.log import logger as logr

from .abcs import DataProduct, DataModel
from .errors import NotFound, DecodeError, ReconcilerError
from .fallback import FallbackChainResolver, Strategy, Confidence
from .normalize import to_int, to_token_units
from .records import ProposalState, VoterRecord, VoteTally
from .signatures import *
from .utils import ZERO_ADDRESS, chunked, well_known_addresses


#################################################################################
#
# Proposal count
#
#################################################################################

class ProposalCountDiscoverer(DataModel):
    """
    Proposal ids are assumed to be dense, starting at 0.  When the governor has
    no count accessor, the count is found by binary searching for the first id
    that getProposalState rejects.
    """

    def __init__(self, ledger, upper_bound=1000, probe_width=10):
        self.ledger = ledger
        self.upper_bound = upper_bound
        self.probe_width = probe_width

    async def exists(self, proposal_id):
        try:
            await self.ledger.get_proposal_state(proposal_id)
        except NotFound:
            return False
        return True

    async def search(self):

        low, high = 0, self.upper_bound

        while low <= high:
            mid = (low + high) // 2

            if await self.exists(mid):
                low = mid + 1
            else:
                high = mid - 1

        count = high + 1

        if count > self.upper_bound:
            logr.warning(f"Proposal count search saturated at the upper bound ({self.upper_bound}), the true count may be higher.")

        return count

    async def discover_proposal_count(self):

        try:
            direct = await self.ledger.get_proposal_count()
        except ReconcilerError as e:
            logr.warning(f"E154191026 - Count accessor failed, searching instead: {e}")
            direct = None

        if direct is not None:
            return to_int(direct)

        return await self.search()

    async def proposal_states(self, proposal_ids):
        """
        State for each id, probed probe_width at a time.  Ids whose state
        can't be read are left out.
        """

        states = {}

        for group in chunked(proposal_ids, self.probe_width):

            results = await asyncio.gather(*[self.ledger.get_proposal_state(pid) for pid in group],
                                           return_exceptions=True)

            for pid, result in zip(group, results):
                if isinstance(result, BaseException):
                    logr.warning(f"E150191026 - Could not read state for proposal {pid}: {result}")
                    continue
                try:
                    states[pid] = ProposalState.decode(to_int(result))
                except DecodeError as e:
                    logr.warning(str(e))

        return states

    async def count_active(self, count):
        states = await self.proposal_states(range(count))
        return sum(1 for state in states.values() if state == ProposalState.ACTIVE)


#################################################################################
#
# Vote tallies
#
#################################################################################

class VoteReplay(DataProduct):
    """
    Folds VoteCast events for one proposal, in ledger order, into one record
    per voter.  The first vote counts unless revoting is allowed, in which case
    the latest does.
    """

    def __init__(self, proposal_id, allow_revote=False):
        self.proposal_id = proposal_id
        self.allow_revote = allow_revote
        self.records = {}
        self.skipped = 0

    def handle(self, event):

        try:
            proposal_id = to_int(event['proposal_id'])
            support = to_int(event['support'])
            weight = to_int(event['voting_power'])
            voter = event['voter'].lower()
        except (KeyError, AttributeError, DecodeError) as e:
            logr.warning(f"Skipping malformed VoteCast event: {e}")
            self.skipped += 1
            return

        if proposal_id != self.proposal_id:
            return

        if support not in VOTE_CHOICES:
            logr.warning(f"Skipping VoteCast with invalid support {support} from {voter}")
            self.skipped += 1
            return

        if voter in self.records and not self.allow_revote:
            return

        self.records[voter] = VoterRecord(voter=voter,
                                          proposal_id=proposal_id,
                                          support=support,
                                          weight=weight,
                                          block_number=to_int(event.get('block_number', 0)),
                                          log_index=to_int(event.get('log_index', 0)))

    def apply_authoritative(self, record):
        self.records[record.voter] = record

    def latest_support(self, voter, events):
        """Support choice from the voter's most recent VoteCast, if any."""

        voter = voter.lower()
        support = None

        for event in events:
            if event.get('voter', '').lower() == voter:
                support = to_int(event['support'])

        return support

    def tally(self):
        return VoteTally.from_records(self.proposal_id, list(self.records.values()))


class VoteTallyReconstructor(DataModel):

    def __init__(self, ledger, fetcher, gov_address, allow_revote=False):
        self.ledger = ledger
        self.fetcher = fetcher
        self.gov_address = gov_address
        self.allow_revote = allow_revote

    async def vote_events(self, proposal_id):
        return await self.fetcher.fetch(self.gov_address, VOTE_CAST, indexed={'proposalId': proposal_id})

    async def reconstruct_tally(self, proposal_id, account=None, support_hint=None):
        """
        support_hint is the account's own choice when the caller already knows it
        (a locally confirmed vote).  It is only used when no VoteCast for the
        account has surfaced yet.
        """

        # Raises NotFound for an id that doesn't exist.
        await self.ledger.get_proposal_state(proposal_id)

        events = await self.vote_events(proposal_id)

        replay = VoteReplay(proposal_id, allow_revote=self.allow_revote)

        for event in events:
            replay.handle(event)

        if account:
            try:
                record = await self.authoritative_record(replay, proposal_id, account, events, support_hint)
            except ReconcilerError as e:
                logr.warning(f"E151191026 - Could not confirm vote of {account} on {proposal_id}: {e}")
                record = None

            if record:
                replay.apply_authoritative(record)

        return replay.tally()

    async def authoritative_record(self, replay, proposal_id, account, events, support_hint=None):
        """
        The governor's own record of the account's vote wins over whatever the
        logs said, and a vote the logs have not caught up with yet is folded in.
        Its support choice comes from the latest VoteCast, or else support_hint.
        """

        weight = to_int(await self.ledger.proposal_voter_info(proposal_id, account))

        if weight == 0:
            return None

        support = replay.latest_support(account, events)
        if support is None:
            support = support_hint

        if support is None or support not in VOTE_CHOICES:
            logr.warning(f"{account} has voted on {proposal_id} but neither a VoteCast nor a local vote says how, leaving it out.")
            return None

        existing = replay.records.get(account.lower())

        return VoterRecord(voter=account.lower(),
                           proposal_id=proposal_id,
                           support=support,
                           weight=weight,
                           block_number=existing.block_number if existing else 0,
                           log_index=existing.log_index if existing else 0,
                           source='direct')


#################################################################################
#
# Snapshots & voting power
#
#################################################################################

class SnapshotVotingPowerResolver(DataModel):

    def __init__(self, ledger, fetcher, gov_address, default_snapshot_id=0, decimals=18):
        self.ledger = ledger
        self.fetcher = fetcher
        self.gov_address = gov_address
        self.default_snapshot_id = default_snapshot_id
        self.decimals = decimals

    async def snapshot_from_creation_event(self, proposal_id):

        events = await self.fetcher.fetch(self.gov_address, PROPOSAL_EVENT,
                                          indexed={'proposalId': proposal_id,
                                                   'eventType': PROPOSAL_EVENT_CREATED})

        if not events:
            raise NotFound(f"No creation event for proposal {proposal_id}")

        data = events[0]['data']
        if isinstance(data, str):
            data = bytes.fromhex(data[2:] if data[:2] == '0x' else data)

        try:
            _, snapshot_id = decode_abi(PROPOSAL_CREATED_DATA_TYPES, data)
        except Exception as e:
            raise DecodeError(f"E152191026 - Bad creation event data for proposal {proposal_id}: {e}") from e

        return snapshot_id

    async def current_snapshot_id(self):
        return to_int(await self.ledger.get_current_snapshot_id())

    async def resolve_snapshot(self, proposal_id):

        chain = FallbackChainResolver(f"snapshot_id[{proposal_id}]",
                                      [Strategy('proposal_created_event',
                                                lambda: self.snapshot_from_creation_event(proposal_id),
                                                Confidence.AUTHORITATIVE),
                                       Strategy('current_snapshot',
                                                self.current_snapshot_id,
                                                Confidence.HEURISTIC)],
                                      default=self.default_snapshot_id,
                                      plausible=lambda v: isinstance(v, int) and v >= 0)

        return await chain.resolve()

    async def resolve_snapshot_id(self, proposal_id):
        return (await self.resolve_snapshot(proposal_id)).value

    async def get_voting_power_wei(self, account, snapshot_id=None):

        if not account:
            return 0

        try:
            if not snapshot_id:
                snapshot_id = await self.current_snapshot_id()
            return to_int(await self.ledger.get_effective_voting_power(account, snapshot_id))
        except Exception as e:
            logr.warning(f"E153191026 - Could not read voting power of {account} at snapshot {snapshot_id}: {e}")
            return 0

    async def get_voting_power(self, account, snapshot_id=None):
        wei = await self.get_voting_power_wei(account, snapshot_id)
        return to_token_units(wei, self.decimals)


#################################################################################
#
# Token holders
#
#################################################################################

class HolderSet(DataProduct):

    def __init__(self):
        self.addresses = set()

    def handle(self, event):
        for side in ('from', 'to'):
            self.add(event.get(side))

    def add(self, address):
        if not address:
            return
        address = address.lower()
        if address != ZERO_ADDRESS:
            self.addresses.add(address)

    def __len__(self):
        return len(self.addresses)


class HolderEnumerator(DataModel):
    """
    Counts holders straight off the ledger: everyone who sent or received the
    token in the recent window (plus a few addresses that always matter),
    filtered down to those whose balance is non-zero right now.
    """

    def __init__(self, ledger, fetcher, token_address, extra_addresses=(), window=100_000, batch_width=10):
        self.ledger = ledger
        self.fetcher = fetcher
        self.token_address = token_address
        self.extra_addresses = [a for a in extra_addresses if a]
        self.window = window
        self.batch_width = batch_width

    async def candidates(self, account=None):

        latest = await self.ledger.block_number()
        from_block = max(0, latest - self.window)

        holder_set = HolderSet()

        for event in await self.fetcher.fetch(self.token_address, TRANSFER, from_block=from_block, to_block=latest):
            holder_set.handle(event)

        for address in self.extra_addresses:
            holder_set.add(address)

        holder_set.add(account)

        logr.info(f"Found {len(holder_set)} candidate holders since block {from_block}")

        return holder_set

    async def has_balance(self, address):
        try:
            return to_int(await self.ledger.balance_of(address)) > 0
        except ReconcilerError as e:
            logr.debug(f"balanceOf({address}) failed, counting as empty: {e}")
            return False

    async def count_with_balance(self, addresses):

        count = 0

        for group in chunked(sorted(set(a.lower() for a in addresses if a)), self.batch_width):
            balances = await asyncio.gather(*[self.has_balance(a) for a in group])
            count += sum(balances)

        return count

    async def enumerate_holders(self, account=None):
        holder_set = await self.candidates(account)
        return await self.count_with_balance(holder_set.addresses)

    async def count_well_known(self, account=None):
        addresses = well_known_addresses()
        if account:
            addresses.append(account)
        return await self.count_with_balance(addresses)


class HolderCountResolver(DataModel):

    def __init__(self, enumerator, indexer=None, default_holders=4):
        self.enumerator = enumerator
        self.indexer = indexer
        self.default_holders = default_holders

    async def from_indexer_list(self):
        return len(await self.indexer.token_holder_list(self.enumerator.token_address))

    async def from_indexer_info(self):
        return (await self.indexer.token_info(self.enumerator.token_address))['holder_count']

    def chain(self, account=None):

        strategies = []

        if self.indexer is not None:
            strategies.append(Strategy('indexer_holder_list', self.from_indexer_list, Confidence.DERIVED))
            strategies.append(Strategy('indexer_token_info', self.from_indexer_info, Confidence.DERIVED))

        strategies.append(Strategy('transfer_enumeration',
                                   lambda: self.enumerator.enumerate_holders(account),
                                   Confidence.DERIVED))
        strategies.append(Strategy('well_known_addresses',
                                   lambda: self.enumerator.count_well_known(account),
                                   Confidence.HEURISTIC))

        return FallbackChainResolver('holders', strategies,
                                     default=self.default_holders,
                                     plausible=lambda v: isinstance(v, int) and v > 0)

    async def resolve(self, account=None):
        return await self.chain(account).resolve()
