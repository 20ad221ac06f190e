import base64

import pytest

from services.solana_rpc import SolanaRpcClient, SolanaRpcError


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload
        self.status = 200

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        return None

    async def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []

    def post(self, url, json, timeout):
        self.requests.append(json)
        if not self._responses:
            raise AssertionError("No more fake responses configured")
        return FakeResponse(self._responses.pop(0))


def _result(value, request_id=1):
    return {'jsonrpc': '2.0', 'id': request_id, 'result': value}


def _token_account(ui_amount=None, amount='0', decimals=6, ui_amount_string=None):
    token_amount = {'amount': amount, 'decimals': decimals, 'uiAmount': ui_amount}
    if ui_amount_string is not None:
        token_amount['uiAmountString'] = ui_amount_string
    return {'account': {'data': {'parsed': {'info': {'tokenAmount': token_amount}}}}}


@pytest.mark.asyncio
async def test_sol_balance_converts_lamports():
    session = FakeSession([_result({'context': {'slot': 1}, 'value': 2_500_000_000})])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    assert await client.get_sol_balance('Owner111') == pytest.approx(2.5)
    assert session.requests[0]['method'] == 'getBalance'


@pytest.mark.asyncio
async def test_token_balance_sums_every_account():
    accounts = [
        _token_account(ui_amount=60.5),
        _token_account(ui_amount=None, ui_amount_string='20.25'),
        _token_account(ui_amount=None, amount='19250000', decimals=6),
    ]
    session = FakeSession([_result({'value': accounts})])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    balance = await client.get_token_balance('Owner111', 'UsdcMint')

    assert balance == pytest.approx(100.0)
    params = session.requests[0]['params']
    assert params[1] == {'mint': 'UsdcMint'}


@pytest.mark.asyncio
async def test_rpc_error_raises():
    session = FakeSession([{'jsonrpc': '2.0', 'id': 1, 'error': {'code': -32602, 'message': 'invalid'}}])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    with pytest.raises(SolanaRpcError):
        await client.get_balance('Owner111')


@pytest.mark.asyncio
async def test_request_ids_increase():
    session = FakeSession([_result({'value': 1}), _result({'value': 2}, request_id=2)])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    await client.get_balance('A')
    await client.get_balance('B')

    assert [request['id'] for request in session.requests] == [1, 2]


@pytest.mark.asyncio
async def test_send_transaction_encodes_base64():
    session = FakeSession([_result('Sig111')])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    signature = await client.send_transaction(b'\x01\x02\x03')

    assert signature == 'Sig111'
    encoded, options = session.requests[0]['params']
    assert base64.b64decode(encoded) == b'\x01\x02\x03'
    assert options['encoding'] == 'base64'
    assert options['skipPreflight'] is False


@pytest.mark.asyncio
async def test_confirm_transaction_polls_until_confirmed():
    session = FakeSession([
        _result({'value': [None]}),
        _result({'value': [{'confirmationStatus': 'processed', 'err': None}]}),
        _result({'value': [{'confirmationStatus': 'confirmed', 'err': None}]}),
    ])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    assert await client.confirm_transaction('Sig111', timeout=10, poll_interval=0) is True
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_confirm_transaction_raises_on_failed_transaction():
    session = FakeSession([_result({'value': [{'confirmationStatus': 'confirmed', 'err': {'InstructionError': [2, 'Custom']}}]})])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    with pytest.raises(SolanaRpcError):
        await client.confirm_transaction('Sig111', timeout=10, poll_interval=0)


@pytest.mark.asyncio
async def test_confirm_transaction_times_out():
    session = FakeSession([_result({'value': [None]})])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    assert await client.confirm_transaction('Sig111', timeout=0, poll_interval=0) is False


@pytest.mark.asyncio
async def test_token_balance_changes_for_owner():
    meta = {
        'preTokenBalances': [
            {'owner': 'Owner111', 'mint': 'Usdc', 'uiTokenAmount': {'amount': '150000000'}},
            {'owner': 'Pool', 'mint': 'Usdc', 'uiTokenAmount': {'amount': '1'}},
        ],
        'postTokenBalances': [
            {'owner': 'Owner111', 'mint': 'Usdc', 'uiTokenAmount': {'amount': '50000000'}},
            {'owner': 'Owner111', 'mint': 'Tsla', 'uiTokenAmount': {'amount': '990000000'}},
        ],
    }
    session = FakeSession([_result({'meta': meta})])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    changes = await client.get_token_balance_changes('Sig111', 'Owner111')

    assert changes == {'Usdc': -100_000_000, 'Tsla': 990_000_000}


@pytest.mark.asyncio
async def test_token_balance_changes_missing_transaction():
    session = FakeSession([_result(None)])
    client = SolanaRpcClient(session, 'http://mock-rpc')

    assert await client.get_token_balance_changes('Sig111', 'Owner111') is None
