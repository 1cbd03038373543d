"""
Unit tests for the EmailJS relay (visittrack/engine/email_relay.py).
requests.post is patched; no network traffic.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from visittrack.engine.email_relay import EmailJSRelay, RelayError

API_URL = 'https://api.emailjs.com/api/v1.0/email/send'


def _relay(**overrides):
    kwargs = dict(api_url=API_URL, service_id='svc', template_id='tpl', user_id='usr')
    kwargs.update(overrides)
    return EmailJSRelay(**kwargs)


def _response(text='OK', status=200):
    response = MagicMock()
    response.text = text
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error")
    return response


def test_configured_requires_all_ids():
    assert _relay().configured
    assert not _relay(template_id=None).configured


def test_send_posts_payload():
    with patch('visittrack.engine.email_relay.requests.post', return_value=_response()) as post:
        assert _relay().send({'to_email': 'gm@hotel.com'}) == 'OK'

    args, kwargs = post.call_args
    assert args[0] == API_URL
    assert kwargs['json'] == {
        'service_id': 'svc',
        'template_id': 'tpl',
        'user_id': 'usr',
        'template_params': {'to_email': 'gm@hotel.com'},
    }
    assert kwargs['verify'] is True
    assert kwargs['timeout'] == (10, 30)


def test_send_includes_access_token():
    with patch('visittrack.engine.email_relay.requests.post', return_value=_response()) as post:
        _relay(access_token='secret').send({})
    assert post.call_args.kwargs['json']['accessToken'] == 'secret'


def test_empty_response_text_becomes_ok():
    with patch('visittrack.engine.email_relay.requests.post', return_value=_response(text='  ')):
        assert _relay().send({}) == 'OK'


def test_http_error_raises_relay_error():
    with patch('visittrack.engine.email_relay.requests.post', return_value=_response(status=400)):
        with pytest.raises(RelayError, match='400'):
            _relay().send({})


def test_connection_error_raises_relay_error():
    boom = requests.exceptions.ConnectionError("unreachable")
    with patch('visittrack.engine.email_relay.requests.post', side_effect=boom):
        with pytest.raises(RelayError, match='unreachable'):
            _relay().send({})


def test_unconfigured_relay_never_posts():
    with patch('visittrack.engine.email_relay.requests.post') as post:
        with pytest.raises(RelayError, match='not configured'):
            _relay(user_id='').send({})
    post.assert_not_called()
