from unittest.mock import MagicMock

import pytest
from flask import Flask

from routestops.ratings_proxy import TRIPADVISOR_BASE_URL, init_ratings_proxy


def _response(json_data=None, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.json.return_value = json_data if json_data is not None else {}
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    app = Flask(__name__)
    init_ratings_proxy(app, 'ta-key', session=session, sleep=lambda s: None)
    return app.test_client()


def test_preflight_returns_no_content(client):
    response = client.options('/api/ratings-proxy')
    assert response.status_code == 204
    assert 'POST' in response.headers['Access-Control-Allow-Methods']


def test_other_methods_not_allowed(client):
    assert client.get('/api/ratings-proxy').status_code == 405


def test_missing_key_is_configuration_error():
    app = Flask(__name__)
    init_ratings_proxy(app, None)
    client = app.test_client()

    response = client.post('/api/ratings-proxy', json={'name': 'A', 'latitude': 1, 'longitude': 2})

    assert response.status_code == 500
    assert response.get_json()['error'] == 'API configuration error'
    assert client.options('/api/ratings-proxy').status_code == 204


def test_details_request_calls_details_endpoint(client, session):
    session.get.return_value = _response({'location_id': '42', 'rating': '4.5', 'num_reviews': '120'})

    response = client.post('/api/ratings-proxy', json={'locationId': '42', 'fetchDetails': True})

    assert response.status_code == 200
    assert response.get_json() == {'data': {'location_id': '42', 'rating': '4.5', 'num_reviews': '120'}}
    args, kwargs = session.get.call_args
    assert args[0] == f"{TRIPADVISOR_BASE_URL}/location/42/details"
    assert kwargs['params'] == {'language': 'en', 'currency': 'USD', 'key': 'ta-key'}
    assert kwargs['headers']['Accept'] == 'application/json'


def test_search_request_returns_record_list(client, session):
    session.get.return_value = _response({'data': [{'location_id': '1', 'name': "Joe's Pizza"}]})

    response = client.post('/api/ratings-proxy', json={
        'name': "Joe's Pizza", 'latitude': 39.78, 'longitude': -89.65, 'type': 'restaurants',
    })

    assert response.status_code == 200
    assert response.get_json() == {'data': [{'location_id': '1', 'name': "Joe's Pizza"}]}
    args, kwargs = session.get.call_args
    assert args[0] == f"{TRIPADVISOR_BASE_URL}/location/search"
    params = kwargs['params']
    assert params['searchQuery'] == "Joe's Pizza"
    assert params['latLong'] == '39.78,-89.65'
    assert params['radius'] == 5
    assert params['radiusUnit'] == 'km'
    assert params['category'] == 'restaurants'


def test_search_without_name_returns_null_data(client, session):
    response = client.post('/api/ratings-proxy', json={'latitude': 39.78, 'longitude': -89.65})

    assert response.status_code == 200
    assert response.get_json() == {'data': None}
    session.get.assert_not_called()


@pytest.mark.parametrize("body", [
    {'name': 'A'},
    {'name': 'A', 'latitude': 39.78},
    {'name': 'A', 'latitude': '', 'longitude': -89.65},
])
def test_search_without_coordinates_is_bad_request(client, session, body):
    response = client.post('/api/ratings-proxy', json=body)

    assert response.status_code == 400
    assert 'latitude and longitude' in response.get_json()['message']
    session.get.assert_not_called()


def test_non_object_body_is_bad_request(client):
    response = client.post('/api/ratings-proxy', json=['not', 'an', 'object'])
    assert response.status_code == 400


def test_upstream_rate_limit_passes_through_after_retries(client, session):
    session.get.return_value = _response({'message': 'Too Many Requests'}, status=429)

    response = client.post('/api/ratings-proxy', json={'locationId': '42', 'fetchDetails': True})

    assert response.status_code == 429
    assert response.get_json()['error'] == 'Upstream Error'
    assert session.get.call_count == 4


def test_upstream_server_error_is_bad_gateway(client, session):
    session.get.return_value = _response({}, status=500)

    response = client.post('/api/ratings-proxy', json={'locationId': '42', 'fetchDetails': True})

    assert response.status_code == 502
    assert session.get.call_count == 4


def test_upstream_not_found_is_not_retried(client, session):
    session.get.return_value = _response({'message': 'Location not found'}, status=404)

    response = client.post('/api/ratings-proxy', json={'locationId': '42', 'fetchDetails': True})

    assert response.status_code == 404
    assert 'Location not found' in response.get_json()['message']
    assert session.get.call_count == 1


def test_repeated_request_served_from_cache(client, session):
    session.get.return_value = _response({'data': [{'location_id': '1', 'name': 'A'}]})
    body = {'name': 'A', 'latitude': 1.0, 'longitude': 2.0}

    first = client.post('/api/ratings-proxy', json=body)
    second = client.post('/api/ratings-proxy', json=dict(reversed(list(body.items()))))

    assert first.get_json() == second.get_json()
    assert session.get.call_count == 1
