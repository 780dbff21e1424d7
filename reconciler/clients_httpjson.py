import os

from web3 import Web3
from eth_abi import encode as encode_abi
from sortedcontainers import SortedDict
from sanic.log import logger as logr

from .utils import camel_to_snake
from .errors import DecodeError
from .normalize import to_int

def resolve_block_count_span(chain_id=None):

    target = 2000

    if chain_id is None:
        default_block_span = target
    elif chain_id in (1, 11155111, 5): # Ethereum, Sepolia, Goerli
        default_block_span = target
    elif chain_id in (10, 8453, 137): # Optimism, Base, Polygon
        default_block_span = target * 6
    elif chain_id in (42161, 421614): # Arbitrum One, Arbitrum Sepolia
        default_block_span = target * 48
    else:
        default_block_span = target

    try:
        override = int(os.getenv('DAO_RECON_HTTP_BLOCK_COUNT_SPAN', ''))
        assert override > 0
    except (ValueError, AssertionError):
        override = None

    return override or default_block_span


class EventLogCaster:

    def __init__(self, abis):
        self.abis = abis

    def lookup(self, signature):

        abi_frag = self.abis.get_by_signature(signature)
        if abi_frag is None:
            raise DecodeError(f"E130191026 - No ABI fragment for {signature}")

        EVENT_NAME = abi_frag.name
        contract_events = Web3().eth.contract(abi=[abi_frag.literal]).events
        processor = getattr(contract_events, EVENT_NAME)().process_log

        def bytes_to_str(x):
            if isinstance(x, bytes):
                return x.hex()
            return x

        def caster_fn(log):
            try:
                tmp = processor(log)
            except Exception as e:
                raise DecodeError(f"E131191026 - Could not decode {signature}: {e}") from e

            args = {camel_to_snake(k) : bytes_to_str(v) for k, v in tmp['args'].items()}

            for k, v in args.items():
                if isinstance(v, str) and Web3.is_checksum_address(v):
                    args[k] = v.lower()

            return args

        return caster_fn


class EventLogFetcher:
    """
    Pulls every log for one event signature at one address over a block range,
    in block-count-span pages, and hands back decoded events in ledger order.

    Logs that repeat a (block_number, log_index) position collapse into one.
    Logs that fail to decode are skipped.
    """

    def __init__(self, ledger, abis, chain_id=None, start_block=0):
        self.ledger = ledger
        self.abis = abis
        self.chain_id = chain_id
        self.start_block = start_block
        self.caster = EventLogCaster(abis)

    def topic_for(self, signature):

        abi_frag = self.abis.get_by_signature(signature)
        if abi_frag is None:
            raise DecodeError(f"E132191026 - No ABI fragment for {signature}")

        # abifsm hands the topic back without its 0x prefix.
        topic = abi_frag.topic
        if topic[:2] != "0x":
            topic = "0x" + topic

        return topic, abi_frag

    def build_topics(self, signature, indexed=None):
        """
        indexed maps an indexed input's name to the value to filter on.  Inputs
        that are left out match anything.
        """

        topic, abi_frag = self.topic_for(signature)

        topics = [topic]

        indexed = indexed or {}
        indexed_inputs = [i for i in abi_frag.literal['inputs'] if i.get('indexed')]

        for inp in indexed_inputs:
            value = indexed.get(inp['name'])
            if value is None:
                topics.append(None)
            else:
                if inp['type'] == 'address':
                    value = value.lower()
                topics.append("0x" + encode_abi([inp['type']], [value]).hex())

        while topics[-1] is None:
            topics.pop()

        return topics

    async def fetch(self, address, signature, indexed=None, from_block=None, to_block=None):

        topics = self.build_topics(signature, indexed)
        caster_fn = self.caster.lookup(signature)

        if from_block is None:
            from_block = self.start_block

        if to_block is None:
            to_block = await self.ledger.block_number()

        step = resolve_block_count_span(self.chain_id)

        ordered = SortedDict()
        skipped = 0

        while from_block <= to_block:

            page_end = min(from_block + step - 1, to_block)

            logs = await self.ledger.get_logs(address, topics, from_block, page_end)

            if len(logs):
                logr.info(f"Fetched {len(logs)} {signature} logs from block {from_block} to {page_end}")

            for log in logs:

                try:
                    args = caster_fn(log)
                except DecodeError as e:
                    logr.warning(str(e))
                    skipped += 1
                    continue

                out = {}
                out['block_number'] = to_int(log['blockNumber'])
                out['transaction_index'] = to_int(log['transactionIndex'])
                out['log_index'] = to_int(log['logIndex'])

                out.update(**args)

                out['signature'] = signature

                ordered[(out['block_number'], out['log_index'])] = out

            from_block = page_end + 1

        if skipped:
            logr.warning(f"Skipped {skipped} malformed {signature} log(s) at {address}")

        return list(ordered.values())
