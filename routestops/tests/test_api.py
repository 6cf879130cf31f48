from unittest.mock import MagicMock, patch

import pytest

import routestops.app as app_module
from routestops.categories import PlaceCategory
from routestops.errors import NoGeocodeResult, NoRouteFound, PlacesProviderError, RoutingProviderError
from routestops.models import EnrichedPlace, Location, SearchMode, SearchResult

ORIGIN = Location(39.80, -89.65)
DESTINATION = Location(39.78, -89.60)


@pytest.fixture
def client():
    app_module.app.config['TESTING'] = True
    return app_module.app.test_client()


@pytest.fixture
def finder():
    mock_finder = MagicMock()
    with patch.object(app_module, 'finder', mock_finder):
        yield mock_finder


def _result(places=None, mode=SearchMode.MEETUP):
    return SearchResult(
        places=places or [],
        center=Location(39.79, -89.625),
        origin_location=ORIGIN,
        destination_location=DESTINATION,
        mode=mode,
        search_points=[Location(39.79, -89.625)],
    )


def _search_body(**overrides):
    body = {
        'origin': '123 Main St, Springfield',
        'destination': '456 Oak Ave, Springfield',
        'mode': 'meetup',
        'placeType': 'catering.restaurant.pizza',
        'maxLocations': 5,
        'radius': 3,
    }
    body.update(overrides)
    return body


def test_health_check(client):
    response = client.get('/')
    assert response.status_code == 200
    data = response.get_json()
    assert data['status'] == 'healthy'
    assert data['endpoints']['search'] == '/api/search'
    assert 'X-Process-Time-ms' in response.headers


def test_categories_lists_all_place_types(client):
    data = client.get('/api/categories').get_json()
    assert data['success'] is True
    assert len(data['data']) == 10
    assert {'id': 'catering.restaurant', 'label': 'Restaurants'} in data['data']


def test_search_success_parses_request(client, finder):
    place = EnrichedPlace(
        external_id='p1', name="Joe's Pizza", location=Location(39.79, -89.62),
        category=PlaceCategory.PIZZA, rating=4.5, review_count=120, ratings_id='2',
    )
    finder.find_places.return_value = _result([place])

    response = client.post('/api/search', json=_search_body())

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['data']['mode'] == 'meetup'
    assert body['data']['places'][0]['name'] == "Joe's Pizza"
    assert body['data']['places'][0]['rating'] == 4.5
    assert body['data']['origin_location'] == [39.80, -89.65]
    assert 'message' not in body
    assert 'X-Compute-Time-ms' in response.headers

    params, mode = finder.find_places.call_args[0]
    assert mode is SearchMode.MEETUP
    assert params.place_type is PlaceCategory.PIZZA
    assert params.max_results == 5
    assert params.radius_miles == 3.0


def test_search_defaults_to_route_mode(client, finder):
    finder.find_places.return_value = _result(mode=SearchMode.ROUTE)

    body = _search_body()
    del body['mode']
    client.post('/api/search', json=body)

    assert finder.find_places.call_args[0][1] is SearchMode.ROUTE


def test_search_with_no_places_adds_message(client, finder):
    finder.find_places.return_value = _result([])

    body = client.post('/api/search', json=_search_body()).get_json()

    assert body['success'] is True
    assert body['data']['places'] == []
    assert 'No places found' in body['message']


@pytest.mark.parametrize("overrides,fragment", [
    ({'destination': ''}, 'both origin and destination'),
    ({'origin': '   '}, 'both origin and destination'),
    ({'mode': 'flying'}, "mode must be"),
    ({'maxLocations': 0}, 'maxLocations'),
    ({'radius': 'far'}, 'Invalid numeric'),
    ({'skipFromStart': 150}, 'skipFromStart'),
    ({'radius': 300}, 'at most 25 miles'),
    ({'radius': -1}, 'radius must be greater than 0'),
    ({'mode': 'route', 'distanceOffRoute': 50}, 'at most 10 miles'),
])
def test_search_validation_errors(client, finder, overrides, fragment):
    response = client.post('/api/search', json=_search_body(**overrides))

    assert response.status_code == 400
    assert fragment in response.get_json()['error']
    finder.find_places.assert_not_called()


def test_search_requires_json_object(client, finder):
    response = client.post('/api/search', data='not json', content_type='text/plain')
    assert response.status_code == 400


@pytest.mark.parametrize("error,status", [
    (NoGeocodeResult('456 Oak Ave, Springfield'), 422),
    (NoRouteFound('No route found between locations'), 422),
    (RoutingProviderError('Routing API error', status_code=500), 502),
])
def test_search_fatal_errors(client, finder, error, status):
    finder.find_places.side_effect = error

    response = client.post('/api/search', json=_search_body())

    assert response.status_code == status
    assert response.get_json()['success'] is False


def test_search_unconfigured_returns_500(client):
    with patch.object(app_module, 'finder', None):
        response = client.post('/api/search', json=_search_body())
    assert response.status_code == 500
    assert 'not configured' in response.get_json()['error']


def test_geocode_success(client, finder):
    finder.maps_service.geocode_address.return_value = ORIGIN

    response = client.post('/api/geocode', json={'address': '123 Main St, Springfield'})

    assert response.status_code == 200
    assert response.get_json() == {'success': True, 'data': {'lat': 39.80, 'lng': -89.65}}
    finder.maps_service.geocode_address.assert_called_once_with('123 Main St, Springfield')


def test_geocode_requires_address(client, finder):
    assert client.post('/api/geocode', json={}).status_code == 400


def test_geocode_not_found(client, finder):
    finder.maps_service.geocode_address.side_effect = NoGeocodeResult('Nowhere')

    response = client.post('/api/geocode', json={'address': 'Nowhere'})

    assert response.status_code == 404
    assert 'No results found for address: Nowhere' in response.get_json()['error']


def test_geocode_provider_failure(client, finder):
    finder.maps_service.geocode_address.side_effect = PlacesProviderError('boom', status_code=503)
    response = client.post('/api/geocode', json={'address': 'Anywhere'})
    assert response.status_code == 502


def test_config_never_exposes_keys(client, finder):
    finder.ratings_service = None

    data = client.get('/api/config').get_json()['data']

    assert data['searchEnabled'] is True
    assert data['ratingsEnabled'] is False
    assert len(data['categories']) == 10
    assert set(data) == {'searchEnabled', 'ratingsEnabled', 'categories', 'apiBaseUrl'}


def test_unknown_endpoint_returns_json_404(client):
    response = client.get('/api/nope')
    assert response.status_code == 404
    assert response.get_json() == {'error': 'Endpoint not found'}


def test_build_finder_requires_geoapify_key():
    assert app_module.build_finder(None) is None
    assert app_module.build_finder('your_api_key_here') is None


def test_build_finder_wires_ratings_when_enabled():
    built = app_module.build_finder('geo-key', ratings_url='http://relay.test/api/ratings-proxy')
    assert built.ratings_service.proxy_url == 'http://relay.test/api/ratings-proxy'

    disabled = app_module.build_finder('geo-key', ratings_url='http://relay.test', ratings_enabled=False)
    assert disabled.ratings_service is None


def test_build_finder_defaults_to_in_process_relay():
    relay = MagicMock()
    relay.configured = True

    built = app_module.build_finder('geo-key', ratings_url=None, relay=relay)

    assert built.ratings_service.relay is relay
    assert built.ratings_service.proxy_url is None


def test_build_finder_prefers_explicit_relay_url():
    relay = MagicMock()
    relay.configured = True

    built = app_module.build_finder('geo-key', ratings_url='http://relay.test/api/ratings-proxy', relay=relay)

    assert built.ratings_service.relay is None
    assert built.ratings_service.proxy_url == 'http://relay.test/api/ratings-proxy'


def test_build_finder_disables_ratings_without_key_or_url():
    relay = MagicMock()
    relay.configured = False

    built = app_module.build_finder('geo-key', ratings_url=None, relay=relay)

    assert built.ratings_service is None
    assert app_module.build_finder('geo-key', ratings_url=None).ratings_service is None


def test_app_relay_is_the_mounted_blueprint_relay():
    assert app_module.app.extensions['ratings_relay'] is app_module.ratings_relay
