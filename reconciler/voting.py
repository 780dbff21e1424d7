import asyncio
from dataclasses import replace

from sanic.log import logger as logr

from .abcs import DataModel
from .errors import (ReconcilerError, NotConnected, ValidationError, InactiveProposal,
                     AlreadyVoted, NoVotingPower)
from .normalize import to_int, to_token_units
from .records import ProposalState, VotingState, VoteStatus, CastVoteResult
from .signatures import VOTE_CHOICES


class ObservableVotingState:

    def __init__(self):
        self.state = VotingState()
        self.subscribers = []

    def subscribe(self, fn):
        self.subscribers.append(fn)

        def unsubscribe():
            if fn in self.subscribers:
                self.subscribers.remove(fn)

        return unsubscribe

    def set(self, **changes):
        self.state = replace(self.state, **changes)
        for fn in list(self.subscribers):
            fn(self.state)

    def reset(self):
        self.set(loading=False, error=None, success=False, last_voted_proposal_id=None)


class OptimisticVoteCoordinator(DataModel):
    """
    Owns the connected account's unconfirmed votes.

    A vote goes Unvoted -> PendingLocal as soon as it passes validation, before
    anything is sent.  A confirming receipt moves it to Confirmed.  Anything
    else (rejection, revert, timeout, cancellation) rolls it back, which drops
    the local record so the proposal reads as Unvoted again.

    Tallies are never adjusted locally, they only ever come from the ledger.
    """

    def __init__(self, ledger, snapshots, gas_limit=300_000, receipt_timeout=120, decimals=18):
        self.ledger = ledger
        self.snapshots = snapshots
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self.decimals = decimals

        self.overlay = {}
        self.statuses = {}
        self.generation = 0

        self.voting_state = ObservableVotingState()

    @property
    def account(self):
        return self.ledger.account

    def reset(self):
        self.generation += 1
        self.overlay.clear()
        self.statuses.clear()
        self.voting_state.reset()

    def status(self, proposal_id):
        return self.statuses.get(proposal_id, VoteStatus.UNVOTED)

    def local_vote(self, proposal_id):
        return self.overlay.get(proposal_id)

    def rollback(self, proposal_id, reason, generation):

        if generation != self.generation:
            # Session was reset while this vote was in flight.
            return

        self.overlay.pop(proposal_id, None)
        self.statuses.pop(proposal_id, None)
        self.voting_state.set(loading=False, success=False, error=reason)

        logr.warning(f"Rolled back local vote on {proposal_id}: {reason}")

    async def has_voted(self, proposal_id):

        if proposal_id in self.overlay:
            return True

        if not self.account:
            return False

        return to_int(await self.ledger.proposal_voter_info(proposal_id, self.account)) != 0

    async def validate(self, proposal_id, support):

        if not self.account:
            raise NotConnected("Connect an account to vote.")

        if support not in VOTE_CHOICES:
            raise ValidationError(f"Invalid vote type {support!r}, expected one of {VOTE_CHOICES}")

        state = ProposalState.decode(to_int(await self.ledger.get_proposal_state(proposal_id)))
        if state != ProposalState.ACTIVE:
            raise InactiveProposal(f"Proposal {proposal_id} is {state.name}, not ACTIVE")

        if await self.has_voted(proposal_id):
            raise AlreadyVoted(f"{self.account} has already voted on proposal {proposal_id}")

        snapshot_id = await self.snapshots.resolve_snapshot_id(proposal_id)
        power = await self.snapshots.get_voting_power_wei(self.account, snapshot_id)

        if power == 0:
            raise NoVotingPower(f"{self.account} has no voting power at snapshot {snapshot_id}")

        return power

    async def cast_vote(self, proposal_id, support):

        generation = self.generation

        try:
            power = await self.validate(proposal_id, support)

            # Another cast for the same proposal may have gone pending while we validated.
            if proposal_id in self.overlay:
                raise AlreadyVoted(f"A vote on proposal {proposal_id} is already pending")

        except ReconcilerError as e:
            self.voting_state.set(loading=False, success=False, error=str(e))
            raise

        voting_power = to_token_units(power, self.decimals)

        self.overlay[proposal_id] = support
        self.statuses[proposal_id] = VoteStatus.PENDING_LOCAL
        self.voting_state.set(loading=True, error=None, success=False)

        tx_hash = None

        try:
            tx_hash = await self.ledger.submit_vote(proposal_id, support, self.gas_limit)
            receipt = await self.ledger.wait_for_receipt(tx_hash, self.receipt_timeout)

            if receipt['status'] != 1:
                raise ReconcilerError(f"Transaction {tx_hash} reverted")

        except asyncio.CancelledError:
            self.rollback(proposal_id, "Vote cancelled", generation)
            raise

        except Exception as e:
            self.rollback(proposal_id, str(e), generation)
            return CastVoteResult(success=False,
                                  proposal_id=proposal_id,
                                  support=support,
                                  status=VoteStatus.ROLLED_BACK,
                                  voting_power=voting_power,
                                  tx_hash=tx_hash,
                                  error=str(e))

        if generation == self.generation:
            self.statuses[proposal_id] = VoteStatus.CONFIRMED
            self.voting_state.set(loading=False, success=True, error=None, last_voted_proposal_id=proposal_id)

        logr.info(f"Vote on {proposal_id} confirmed in block {receipt['block_number']}: {tx_hash}")

        return CastVoteResult(success=True,
                              proposal_id=proposal_id,
                              support=support,
                              status=VoteStatus.CONFIRMED,
                              voting_power=voting_power,
                              tx_hash=tx_hash,
                              block_number=receipt['block_number'])
