from reconciler.utils import camel_to_snake, chunked, secret_text, well_known_addresses


def test_camel_to_snake():
    assert camel_to_snake('votingPower') == 'voting_power'
    assert camel_to_snake('proposalId') == 'proposal_id'
    assert camel_to_snake('HolderCountResolver') == 'holder_count_resolver'


def test_chunked():
    assert chunked(range(5), 2) == [[0, 1], [2, 3], [4]]
    assert chunked([], 10) == []


def test_secret_text():
    assert secret_text('abcdefghijklmnop', 3) == 'abc...nop'
    assert secret_text('abc', 3) == 'abc***...'


def test_well_known_addresses():
    addresses = well_known_addresses()
    assert len(addresses) == 10
    assert addresses[0] == '0x0000000000000000000000000000000000000001'
    assert addresses[-1] == '0x000000000000000000000000000000000000000a'
