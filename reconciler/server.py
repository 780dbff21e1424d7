from dotenv import load_dotenv

load_dotenv()

import os
from datetime import datetime
from importlib.metadata import version as importlib_version
from textwrap import dedent

from sanic_ext import openapi
from sanic import Sanic
from sanic.response import json
from sanic.log import logger as logr

from .middleware import start_timer, add_server_timing_header, measure
from .engine import GovernanceEngine
from .data_models import ANALYTICS_METRICS
from .logsetup import get_logger
from . import __version__

BOOT_TIME = datetime.now().isoformat()
GIT_COMMIT_SHA = os.getenv('GIT_COMMIT_SHA', 'n/a')

glogr = get_logger('global')

glogr.info(f"{BOOT_TIME=}")
glogr.info(f"GIT_COMMIT_SHA={GIT_COMMIT_SHA}")

app = Sanic("dao_reconciler")
app.config.REQUEST_TIMEOUT = int(os.getenv('DAO_RECON_REQUEST_TIMEOUT', '300'))
app.config.RESPONSE_TIMEOUT = int(os.getenv('DAO_RECON_RESPONSE_TIMEOUT', '300'))

app.register_middleware(start_timer, "request")
app.register_middleware(add_server_timing_header, "response")


def bad_request(message):
    return json({'error': message}, status=400)


def parse_proposal_id(proposal_id):
    try:
        proposal_id = int(proposal_id)
    except (TypeError, ValueError):
        return None
    return proposal_id if proposal_id >= 0 else None


#################################################################################
#
# Dashboard
#
#################################################################################

@app.route('/v1/dashboard')
@openapi.tag("Governance Metrics")
@openapi.summary("Holders, supply, proposal counts, participation, delegation, success rate and health.")
@openapi.description("""
## Description
The dashboard's AnalyticsSnapshot, composed fresh on every request.

## Methodology
Each figure has its own fallback chain (analytics helper, then ledger-derived
values, then heuristics, then a seeded default).  `sources` names which link
of each chain produced the value.
""")
@measure
async def dashboard(request):
    return await dashboard_handler(app, request)

async def dashboard_handler(app, request):
    snapshot = await app.ctx.engine.dashboard_stats()
    return json(snapshot.to_dict())


@app.route('/v1/analytics/<metric>')
@openapi.tag("Governance Metrics")
@openapi.summary("Raw analytics-helper view for one of: proposal, voter, token, timelock, health.")
@measure
async def analytics(request, metric: str):
    return await analytics_handler(app, request, metric)

async def analytics_handler(app, request, metric):

    if metric not in ANALYTICS_METRICS:
        return json({'error': f"Unknown metric '{metric}'", 'metrics': list(ANALYTICS_METRICS)}, status=404)

    data = await app.ctx.engine.load_analytics(metric)

    return json({'metric': metric, 'data': data})


#################################################################################
#
# Proposals
#
#################################################################################

@app.route('/v1/proposal_count')
@openapi.tag("Proposal State")
@openapi.summary("Number of proposals, from the count accessor or a binary search over ids.")
@measure
async def proposal_count(request):
    return await proposal_count_handler(app, request)

async def proposal_count_handler(app, request):
    stats = await app.ctx.engine.proposal_stats()
    return json(stats)


@app.route('/v1/proposals')
@openapi.tag("Proposal State")
@openapi.summary("All proposals with their state and reconstructed vote totals.")
@measure
async def proposals(request):
    return await proposals_handler(app, request)

async def proposals_handler(app, request):
    res = await app.ctx.engine.list_proposals()
    return json({'proposals': [p.to_dict() for p in res]})


@app.route('/v1/proposal/<proposal_id>/totals')
@openapi.tag("Proposal State")
@openapi.summary("Vote totals for one proposal, replayed from VoteCast events.")
@openapi.parameter(
    "include_voters",
    bool,
    "query",
    description="Include the per-voter records that make up the totals."
)
@measure
async def proposal_totals(request, proposal_id: str):
    return await proposal_totals_handler(app, request, proposal_id)

async def proposal_totals_handler(app, request, proposal_id):

    pid = parse_proposal_id(proposal_id)
    if pid is None:
        return bad_request(f"Invalid proposal id '{proposal_id}'")

    include_voters = str(request.args.get('include_voters', 'false')).lower() in ('true', '1')

    tally = await app.ctx.engine.get_vote_totals(pid)

    return json({'proposal_id': pid, 'totals': tally.to_dict(include_voters=include_voters)})


#################################################################################
#
# Voting Power
#
#################################################################################

@app.route('/v1/voting_power/<addr>')
@openapi.tag("Voting Power")
@openapi.summary("Voting power of an address, at a proposal's snapshot or the current one.")
@openapi.parameter(
    "proposal_id",
    int,
    "query",
    description="Resolve the snapshot of this proposal. Omit for the current snapshot."
)
@measure
async def voting_power(request, addr: str):
    return await voting_power_handler(app, request, addr)

async def voting_power_handler(app, request, addr):

    raw_pid = request.args.get('proposal_id', None)

    pid = None
    if raw_pid is not None:
        pid = parse_proposal_id(raw_pid)
        if pid is None:
            return bad_request(f"Invalid proposal id '{raw_pid}'")

    power = await app.ctx.engine.get_voting_power(pid, addr.lower())

    return json({'address': addr.lower(), 'proposal_id': pid, 'voting_power': power})


#################################################################################
#
# ⏫ 🌎 BOOT SEQUENCE
#
#################################################################################

@app.before_server_start
async def bootstrap_engine(app, loop):
    app.ctx.engine = GovernanceEngine.from_config()
    logr.info(f"Engine ready for {app.ctx.engine.deployment['gov']['address']}")

@app.after_server_stop
async def teardown_engine(app, loop):
    await app.ctx.engine.teardown()


@app.get("/health")
@openapi.tag("Checks")
@openapi.summary("Server health check")
async def health_check(request):
    return json({
        "version": __version__,
        "gitsha": GIT_COMMIT_SHA,
        "boot_time": BOOT_TIME,
        "env": {'PipDistributions' : {mod : importlib_version(mod) for mod in ['web3', 'sanic', 'sanic-ext', 'abifsm', 'aiohttp']}}
    })


app.ext.openapi.describe(
    "DAO Reconciler",
    version=__version__,
    description=dedent(
        """
# About

A read-only API over governance state reconstructed straight from the ledger.

Nothing is cached between requests: every answer is the best view available
at the time of the query, with each figure falling back through progressively
less authoritative sources rather than failing.

All responses include a `server-timing` header, denominated in milliseconds.
"""
    ),
)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8004, dev=True, debug=True)
