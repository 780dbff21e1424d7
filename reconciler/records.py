from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
from fractions import Fraction
from typing import Optional, Tuple, Dict

from .errors import DecodeError
from .signatures import AGAINST, FOR, ABSTAIN


class ProposalState(IntEnum):
    ACTIVE = 0
    CANCELED = 1
    DEFEATED = 2
    SUCCEEDED = 3
    QUEUED = 4
    EXECUTED = 5
    EXPIRED = 6

    @classmethod
    def decode(cls, value):
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise DecodeError(f"E110191026 - Unknown proposal state: {value!r}")


class VoteStatus(Enum):
    UNVOTED = 'unvoted'
    PENDING_LOCAL = 'pending_local'
    CONFIRMED = 'confirmed'
    ROLLED_BACK = 'rolled_back'


@dataclass(frozen=True)
class VoterRecord:
    voter: str
    proposal_id: int
    support: int
    weight: int
    block_number: int = 0
    log_index: int = 0
    source: str = 'log'

    def to_dict(self):
        return {'voter': self.voter,
                'support': self.support,
                'weight': str(self.weight),
                'block_number': self.block_number,
                'log_index': self.log_index,
                'source': self.source}


@dataclass(frozen=True)
class VoteTally:
    proposal_id: int
    yes: int = 0
    no: int = 0
    abstain: int = 0
    voters: Tuple[VoterRecord, ...] = ()

    @classmethod
    def zero(cls, proposal_id):
        return cls(proposal_id=proposal_id)

    @classmethod
    def from_records(cls, proposal_id, records):

        totals = {AGAINST: 0, FOR: 0, ABSTAIN: 0}
        for record in records:
            totals[record.support] += record.weight

        return cls(proposal_id=proposal_id,
                   yes=totals[FOR],
                   no=totals[AGAINST],
                   abstain=totals[ABSTAIN],
                   voters=tuple(records))

    @property
    def total(self):
        return self.yes + self.no + self.abstain

    @property
    def total_voters(self):
        return len(self.voters)

    def percentages(self) -> Dict[str, Fraction]:
        total = self.total

        if total == 0:
            return {'yes': Fraction(0), 'no': Fraction(0), 'abstain': Fraction(0)}

        return {'yes': Fraction(100 * self.yes, total),
                'no': Fraction(100 * self.no, total),
                'abstain': Fraction(100 * self.abstain, total)}

    def to_dict(self, include_voters=False):
        pct = self.percentages()

        out = {'proposal_id': self.proposal_id,
               'yes': str(self.yes),
               'no': str(self.no),
               'abstain': str(self.abstain),
               'total': str(self.total),
               'total_voters': self.total_voters,
               'yes_percentage': float(pct['yes']),
               'no_percentage': float(pct['no']),
               'abstain_percentage': float(pct['abstain'])}

        if include_voters:
            out['voters'] = [v.to_dict() for v in self.voters]

        return out


@dataclass(frozen=True)
class Proposal:
    id: int
    state: ProposalState
    snapshot_id: Optional[int] = None
    deadline: Optional[int] = None
    tally: Optional[VoteTally] = None
    has_voted: bool = False
    local_vote: Optional[int] = None

    @property
    def is_active(self):
        return self.state == ProposalState.ACTIVE

    def to_dict(self):
        return {'id': self.id,
                'state': self.state.name,
                'snapshot_id': self.snapshot_id,
                'deadline': self.deadline,
                'totals': self.tally.to_dict() if self.tally else None,
                'has_voted': self.has_voted,
                'local_vote': self.local_vote}


@dataclass(frozen=True)
class HealthScore:
    participation: int = 0
    delegation: int = 0
    activity: int = 0
    execution: int = 0
    threat_diversity: int = 0

    SUB_SCORE_CAP = 20

    @classmethod
    def from_breakdown(cls, breakdown):
        capped = [max(0, min(cls.SUB_SCORE_CAP, int(v))) for v in breakdown]
        if len(capped) != 5:
            raise DecodeError(f"E111191026 - Health breakdown needs 5 sub-scores, got {len(capped)}")
        return cls(*capped)

    @property
    def total(self):
        return self.participation + self.delegation + self.activity + self.execution + self.threat_diversity

    def to_dict(self):
        out = asdict(self)
        out['total'] = self.total
        return out


@dataclass(frozen=True)
class AnalyticsSnapshot:
    holders: int
    total_supply: int
    treasury_balance: int
    circulating_supply: int
    total_proposals: int
    active_proposals: int
    participation_rate: float
    delegation_rate: float
    proposal_success_rate: float
    health: HealthScore
    sources: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {'holders': self.holders,
                'total_supply': str(self.total_supply),
                'treasury_balance': str(self.treasury_balance),
                'circulating_supply': str(self.circulating_supply),
                'total_proposals': self.total_proposals,
                'active_proposals': self.active_proposals,
                'participation_rate': self.participation_rate,
                'delegation_rate': self.delegation_rate,
                'proposal_success_rate': self.proposal_success_rate,
                'health': self.health.to_dict(),
                'sources': dict(self.sources)}


@dataclass
class VotingState:
    loading: bool = False
    error: Optional[str] = None
    success: bool = False
    last_voted_proposal_id: Optional[int] = None


@dataclass(frozen=True)
class VoteDetails:
    has_voted: bool
    voting_power: str
    support: Optional[int] = None


@dataclass(frozen=True)
class CastVoteResult:
    success: bool
    proposal_id: int
    support: int
    status: VoteStatus
    voting_power: str = "0"
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None
