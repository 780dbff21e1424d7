#!/usr/bin/env python3
from dotenv import load_dotenv

load_dotenv()

import asyncio
from pprint import pprint

from argh import arg, dispatch_commands

from .engine import GovernanceEngine
from .data_models import ANALYTICS_METRICS


async def run(fn, config_file=None, account=None):
    engine = GovernanceEngine.from_config(config_file, account=account)
    try:
        return await fn(engine)
    finally:
        await engine.teardown()


@arg('--config-file', help='YAML deployment config. Defaults to DAO_RECON_CONFIG_FILE.')
def proposal_count(config_file=None):
    """Number of proposals, and how many are active."""

    out = asyncio.run(run(lambda e: e.proposal_stats(), config_file))
    pprint(out)


@arg('proposal_id', type=int, help='Proposal to replay votes for.')
@arg('--account', help='Also reconcile this account against the governor\'s own voter record.')
@arg('--config-file', help='YAML deployment config. Defaults to DAO_RECON_CONFIG_FILE.')
def tally(proposal_id, account=None, config_file=None):
    """Vote totals for a proposal, replayed from VoteCast events."""

    out = asyncio.run(run(lambda e: e.get_vote_totals(proposal_id), config_file, account))
    pprint(out.to_dict(include_voters=True))


@arg('account', help='Address to look up.')
@arg('--proposal-id', type=int, help='Use this proposal\'s snapshot instead of the current one.')
@arg('--config-file', help='YAML deployment config. Defaults to DAO_RECON_CONFIG_FILE.')
def voting_power(account, proposal_id=None, config_file=None):
    """Voting power of an account, in token units."""

    out = asyncio.run(run(lambda e: e.get_voting_power(proposal_id, account), config_file))
    print(out)


@arg('--account', help='Connected account, checked directly if nothing else turns up holders.')
@arg('--config-file', help='YAML deployment config. Defaults to DAO_RECON_CONFIG_FILE.')
def holders(account=None, config_file=None):
    """Token holder count, and which source it came from."""

    res = asyncio.run(run(lambda e: e.holders.resolve(e.account), config_file, account))
    pprint({'holders': res.value, 'source': res.source, 'confidence': res.confidence.name})


@arg('--config-file', help='YAML deployment config. Defaults to DAO_RECON_CONFIG_FILE.')
def dashboard(config_file=None):
    """The full analytics snapshot."""

    out = asyncio.run(run(lambda e: e.dashboard_stats(), config_file))
    pprint(out.to_dict())


@arg('metric', choices=ANALYTICS_METRICS, help='Which analytics-helper view to load.')
@arg('--config-file', help='YAML deployment config. Defaults to DAO_RECON_CONFIG_FILE.')
def analytics(metric, config_file=None):
    """Raw analytics-helper view for one metric."""

    out = asyncio.run(run(lambda e: e.load_analytics(metric), config_file))
    pprint(out)


def main():
    dispatch_commands([proposal_count, tally, voting_power, holders, dashboard, analytics])


if __name__ == "__main__":
    main()
