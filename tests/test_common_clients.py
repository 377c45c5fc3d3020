"""
Tests for the external-source API clients.

requests is patched so status-code mapping, token exchange and response
shaping can be verified offline.
"""

import pytest
import requests
from unittest.mock import MagicMock, patch

from common.base_client import (
    BaseAPIClient,
    PlatformAPIError,
    PlatformNetworkError,
    PlatformNotFoundError,
    PlatformRateLimitError,
    PlatformUnauthorizedError,
    PlatformUnavailableError,
)
from common.errors import AuthenticationError, NetworkError, ServiceUnavailableError
from common.momo_client import MomoClient
from common.mono_client import MonoClient


def make_response(status_code, json_data=None, headers=None, text=''):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data if json_data is not None else {}
    response.content = b'{}' if json_data is not None else b''
    response.headers = headers or {}
    response.text = text
    return response


class TestBaseClientErrorMapping:

    @patch('common.base_client.requests.request')
    def test_success_returns_json(self, mock_request):
        mock_request.return_value = make_response(200, {'ok': True})

        client = BaseAPIClient('https://api.test/')

        assert client.get('/ping', {'a': 1}) == {'ok': True}
        mock_request.assert_called_once_with(
            'GET', 'https://api.test/ping', headers={'Content-Type': 'application/json'},
            params={'a': 1}, json=None, timeout=10
        )

    @patch('common.base_client.requests.request')
    def test_empty_body(self, mock_request):
        mock_request.return_value = make_response(202)
        assert BaseAPIClient('https://api.test').post('/x') == {}

    @pytest.mark.parametrize('status,error', [
        (401, PlatformUnauthorizedError),
        (403, PlatformUnauthorizedError),
        (404, PlatformNotFoundError),
        (500, PlatformUnavailableError),
        (503, PlatformUnavailableError),
        (418, PlatformAPIError),
    ])
    @patch('common.base_client.requests.request')
    def test_status_mapping(self, mock_request, status, error):
        mock_request.return_value = make_response(status, {})
        with pytest.raises(error):
            BaseAPIClient('https://api.test').get('/x')

    @patch('common.base_client.requests.request')
    def test_rate_limit_retry_after(self, mock_request):
        mock_request.return_value = make_response(429, {}, headers={'Retry-After': '30'})

        with pytest.raises(PlatformRateLimitError) as exc_info:
            BaseAPIClient('https://api.test').get('/x')

        assert exc_info.value.retry_after == 30
        assert exc_info.value.retryable is True

    @patch('common.base_client.requests.request')
    def test_transport_error(self, mock_request):
        mock_request.side_effect = requests.ConnectionError('refused')

        with pytest.raises(PlatformNetworkError) as exc_info:
            BaseAPIClient('https://api.test').get('/x')

        assert isinstance(exc_info.value, NetworkError)

    def test_taxonomy(self):
        assert issubclass(PlatformUnauthorizedError, AuthenticationError)
        assert issubclass(PlatformUnavailableError, ServiceUnavailableError)


class TestMomoClient:

    @pytest.mark.asyncio
    async def test_initialize_without_credentials(self):
        result = await MomoClient(None, None).initialize()
        assert result.ok is False
        assert result.auth_failed is False

    @pytest.mark.asyncio
    @patch('common.base_client.requests.request')
    async def test_initialize_stores_token(self, mock_request):
        mock_request.return_value = make_response(200, {'access_token': 'tok_123'})
        client = MomoClient('key', 'secret', base_url='https://momo.test')

        result = await client.initialize()

        assert result.ok is True
        assert client.access_token == 'tok_123'
        headers = mock_request.call_args.kwargs['headers']
        assert headers['Authorization'].startswith('Basic ')
        assert headers['Ocp-Apim-Subscription-Key'] == 'key'

    @pytest.mark.asyncio
    @patch('common.base_client.requests.request')
    async def test_initialize_auth_failure(self, mock_request):
        mock_request.return_value = make_response(401, {})

        result = await MomoClient('key', 'bad').initialize()

        assert result.ok is False
        assert result.auth_failed is True

    @pytest.mark.asyncio
    @patch('common.base_client.requests.request')
    async def test_initialize_service_failure(self, mock_request):
        mock_request.return_value = make_response(503, {})

        result = await MomoClient('key', 'secret').initialize()

        assert result.ok is False
        assert result.auth_failed is False

    @pytest.mark.asyncio
    @patch('common.base_client.requests.request')
    async def test_get_transactions(self, mock_request):
        mock_request.return_value = make_response(200, {'transactions': [{'externalId': 'e1'}]})
        client = MomoClient('key', 'secret')
        client.access_token = 'tok'

        result = await client.get_transactions('0241234567', '2025-01-01', '2025-01-31')

        assert result == [{'externalId': 'e1'}]
        assert mock_request.call_args.kwargs['params'] == {
            'msisdn': '0241234567', 'startDate': '2025-01-01', 'endDate': '2025-01-31'
        }
        assert mock_request.call_args.kwargs['headers']['Authorization'] == 'Bearer tok'


class TestMonoClient:

    @pytest.mark.asyncio
    async def test_initialize_requires_key(self):
        assert (await MonoClient(None).initialize()).ok is False
        assert (await MonoClient('sk').initialize()).ok is True

    @pytest.mark.asyncio
    @patch('common.base_client.requests.request')
    async def test_get_transactions_types_from_debit_credit(self, mock_request):
        mock_request.return_value = make_response(200, {'data': [
            {'id': 't1', 'amount': -2500, 'type': 'debit', 'narration': 'POS KFC', 'date': '2025-01-02'},
            {'id': 't2', 'amount': 100000, 'type': 'credit', 'narration': None, 'date': '2025-01-03'},
        ]})

        result = await MonoClient('sk').get_transactions('acc', '2025-01-01', '2025-01-31')

        assert [(t['id'], t['amount'], t['type']) for t in result] == [
            ('t1', 2500, 'expense'), ('t2', 100000, 'income')
        ]
        assert result[1]['description'] == 'Bank transaction'
        assert mock_request.call_args.kwargs['headers']['mono-sec-key'] == 'sk'

    @pytest.mark.asyncio
    @patch('common.base_client.requests.request')
    async def test_validate_account_not_found(self, mock_request):
        mock_request.return_value = make_response(404, {})
        assert await MonoClient('sk').validate_account('missing') is False

    @pytest.mark.asyncio
    @patch('common.base_client.requests.request')
    async def test_validate_account_auth_propagates(self, mock_request):
        mock_request.return_value = make_response(401, {})
        with pytest.raises(AuthenticationError):
            await MonoClient('sk').validate_account('acc')
