import asyncio
from collections.abc import Mapping

from sanic.log import logger as logr

from .abcs import DataModel
from .errors import NotFound, DecodeError, ReconcilerError
from .fallback import FallbackChainResolver, Strategy, Confidence
from .normalize import to_int, to_rate, struct_field, BASIS_POINTS, PERCENT
from .records import AnalyticsSnapshot, HealthScore, ProposalState
from .utils import camel_to_snake

THREAT_LEVELS = ('lowThreatCount', 'mediumThreatCount', 'highThreatCount', 'criticalThreatCount')

ANALYTICS_METRICS = ('proposal', 'voter', 'token', 'timelock', 'health')

def plausible_rate(value):
    return isinstance(value, float) and 0.01 < value <= 1

def plausible_amount(value):
    return isinstance(value, int) and value >= 0

def struct_to_dict(raw):

    if hasattr(raw, '_asdict'):
        raw = raw._asdict()

    if not isinstance(raw, Mapping):
        raise DecodeError(f"E160191026 - Expected a struct, got {type(raw).__name__}")

    out = {}
    for k, v in raw.items():
        if isinstance(v, (list, tuple)):
            v = [to_int(i) for i in v]
        elif not isinstance(v, str):
            v = to_int(v)
        out[camel_to_snake(k)] = v

    return out


class GovernanceMetricsAggregator(DataModel):
    """
    Composes the dashboard's AnalyticsSnapshot.  Every figure is resolved by its
    own fallback chain, so one dead source costs one field its best value and
    never the whole snapshot.
    """

    def __init__(self, ledger, discoverer, tallies, holders, settings, gov_address):
        self.ledger = ledger
        self.discoverer = discoverer
        self.tallies = tallies
        self.holders = holders
        self.settings = settings
        self.defaults = settings.defaults
        self.gov_address = gov_address

    #################################################################################
    # Supply

    async def total_supply(self):
        try:
            return to_int(await self.ledger.total_supply())
        except ReconcilerError as e:
            logr.warning(f"E161191026 - totalSupply unavailable: {e}")
            return 0

    async def treasury_from_analytics(self):
        analytics = await self.ledger.get_token_distribution_analytics()
        return to_int(struct_field(analytics, 'treasuryBalance', 2))

    async def treasury_from_governance_balance(self):
        return to_int(await self.ledger.balance_of(self.gov_address))

    async def treasury_balance(self):
        chain = FallbackChainResolver('treasury_balance',
                                      [Strategy('analytics_helper', self.treasury_from_analytics, Confidence.AUTHORITATIVE),
                                       Strategy('governance_balance', self.treasury_from_governance_balance, Confidence.DERIVED)],
                                      default=self.defaults.treasury_balance,
                                      plausible=plausible_amount)
        return await chain.resolve()

    #################################################################################
    # Proposals

    async def proposal_stats(self):
        try:
            count = await self.discoverer.discover_proposal_count()
            active = await self.discoverer.count_active(count)
        except ReconcilerError as e:
            logr.warning(f"E162191026 - Proposal stats unavailable: {e}")
            return 0, 0

        return count, active

    #################################################################################
    # Rates

    async def participation_from_analytics(self):
        analytics = await self.ledger.get_proposal_analytics(0, self.settings.analytics_proposal_range)
        return to_rate(struct_field(analytics, 'avgVotingTurnout', 16), BASIS_POINTS)

    async def participation_from_replay(self, count, total_supply):
        """Average share of supply that voted, over the most recent proposals."""

        if count == 0 or total_supply == 0:
            raise NotFound("Nothing to replay participation from.")

        recent = range(max(0, count - self.settings.recent_proposal_window), count)

        turnouts = []
        for proposal_id in recent:
            tally = await self.tallies.reconstruct_tally(proposal_id)
            turnouts.append(tally.total / total_supply)

        return sum(turnouts) / len(turnouts)

    async def participation_rate(self, count, total_supply):
        chain = FallbackChainResolver('participation_rate',
                                      [Strategy('analytics_helper', self.participation_from_analytics, Confidence.AUTHORITATIVE),
                                       Strategy('vote_replay', lambda: self.participation_from_replay(count, total_supply), Confidence.HEURISTIC)],
                                      default=self.defaults.participation_rate,
                                      plausible=plausible_rate)
        return await chain.resolve()

    async def delegation_from_analytics(self):
        analytics = await self.ledger.get_token_distribution_analytics()
        return to_rate(struct_field(analytics, 'percentageDelegated', 4), BASIS_POINTS)

    async def delegation_from_snapshot(self):

        snapshot_id = to_int(await self.ledger.get_current_snapshot_id())
        if snapshot_id == 0:
            raise NotFound("No snapshot taken yet.")

        metrics = await self.ledger.get_snapshot_metrics(snapshot_id)
        return to_rate(struct_field(metrics, 'percentageDelegated', 4), BASIS_POINTS)

    async def delegation_rate(self):
        chain = FallbackChainResolver('delegation_rate',
                                      [Strategy('analytics_helper', self.delegation_from_analytics, Confidence.AUTHORITATIVE),
                                       Strategy('snapshot_metrics', self.delegation_from_snapshot, Confidence.DERIVED)],
                                      default=self.defaults.delegation_rate,
                                      plausible=plausible_rate)
        return await chain.resolve()

    async def success_from_analytics(self):
        analytics = await self.ledger.get_proposal_analytics(0, self.settings.analytics_proposal_range)
        return to_rate(struct_field(analytics, 'generalSuccessRate', 9), PERCENT)

    async def success_from_states(self, count):

        states = await self.discoverer.proposal_states(range(count))

        passed = sum(1 for s in states.values() if s in (ProposalState.SUCCEEDED, ProposalState.QUEUED, ProposalState.EXECUTED))
        decided = sum(1 for s in states.values() if s not in (ProposalState.ACTIVE, ProposalState.CANCELED))

        if decided == 0:
            raise NotFound("No decided proposals yet.")

        return passed / decided

    async def success_rate(self, count):
        chain = FallbackChainResolver('proposal_success_rate',
                                      [Strategy('analytics_helper', self.success_from_analytics, Confidence.AUTHORITATIVE),
                                       Strategy('proposal_states', lambda: self.success_from_states(count), Confidence.HEURISTIC)],
                                      default=self.defaults.proposal_success_rate,
                                      plausible=plausible_rate)
        return await chain.resolve()

    #################################################################################
    # Health

    async def health_from_analytics(self):
        raw = await self.ledger.calculate_governance_health_score()
        breakdown = struct_field(raw, 'breakdown', 1)
        return HealthScore.from_breakdown([to_int(v) for v in breakdown])

    async def threat_diversity(self):
        """5 points per timelock threat level seen, 10 when the timelock can't be read."""

        try:
            timelock = await self.ledger.get_timelock_analytics(self.settings.analytics_proposal_range)
            levels = sum(1 for level in THREAT_LEVELS if to_int(struct_field(timelock, level, None)) > 0)
        except ReconcilerError as e:
            logr.info(f"Timelock analytics unavailable for health score: {e}")
            return 10

        return 5 * levels

    async def health_from_rates(self, participation, delegation, success, count, active):

        def cap(x):
            return max(0, min(HealthScore.SUB_SCORE_CAP, int(round(x))))

        return HealthScore(participation=cap(20 * min(1.0, participation / 0.5)),
                           delegation=cap(20 * min(1.0, delegation / 0.5)),
                           activity=cap(4 * active + 2 * min(count, 5)),
                           execution=cap(20 * success),
                           threat_diversity=cap(await self.threat_diversity()))

    async def health(self, participation, delegation, success, count, active):
        chain = FallbackChainResolver('health_score',
                                      [Strategy('analytics_helper', self.health_from_analytics, Confidence.AUTHORITATIVE),
                                       Strategy('local', lambda: self.health_from_rates(participation, delegation, success, count, active), Confidence.HEURISTIC)],
                                      default=HealthScore(),
                                      plausible=lambda v: isinstance(v, HealthScore))
        return await chain.resolve()

    #################################################################################

    async def aggregate(self, account=None):

        holders, total_supply, treasury, (count, active) = await asyncio.gather(self.holders.resolve(account),
                                                                                 self.total_supply(),
                                                                                 self.treasury_balance(),
                                                                                 self.proposal_stats())

        participation, delegation, success = await asyncio.gather(self.participation_rate(count, total_supply),
                                                                  self.delegation_rate(),
                                                                  self.success_rate(count))

        health = await self.health(participation.value, delegation.value, success.value, count, active)

        sources = {'holders': holders.source,
                   'treasury_balance': treasury.source,
                   'participation_rate': participation.source,
                   'delegation_rate': delegation.source,
                   'proposal_success_rate': success.source,
                   'health': health.source}

        return AnalyticsSnapshot(holders=holders.value,
                                 total_supply=total_supply,
                                 treasury_balance=treasury.value,
                                 circulating_supply=max(0, total_supply - treasury.value),
                                 total_proposals=count,
                                 active_proposals=active,
                                 participation_rate=participation.value,
                                 delegation_rate=delegation.value,
                                 proposal_success_rate=success.value,
                                 health=health.value,
                                 sources=sources)

    async def load_analytics(self, metric):
        """Raw analytics-helper view for one metric, or None when it can't be had."""

        span = self.settings.analytics_proposal_range

        try:
            if metric == 'proposal':
                raw = await self.ledger.get_proposal_analytics(0, span)
            elif metric == 'voter':
                raw = await self.ledger.get_voter_behavior_analytics(span)
            elif metric == 'token':
                raw = await self.ledger.get_token_distribution_analytics()
            elif metric == 'timelock':
                raw = await self.ledger.get_timelock_analytics(span)
            elif metric == 'health':
                raw = await self.ledger.calculate_governance_health_score()
                score = to_int(struct_field(raw, 'score', 0))
                breakdown = HealthScore.from_breakdown([to_int(v) for v in struct_field(raw, 'breakdown', 1)])
                return {'score': score, 'breakdown': breakdown.to_dict()}
            else:
                logr.warning(f"Unknown analytics metric: {metric}")
                return None

            return struct_to_dict(raw)

        except ReconcilerError as e:
            logr.warning(f"E163191026 - Could not load {metric} analytics: {e}")
            return None
