#!/usr/bin/env python3
"""
Quick script to verify a running RouteStops API is set up correctly
Usage: python test_setup.py [base_url]
"""

import requests
import time
import sys

BASE_URL = 'http://localhost:5001'


def test_api_server(base_url):
    """Test if the API server is responding"""
    try:
        response = requests.get(f'{base_url}/', timeout=5)
        if response.status_code == 200 and response.json().get('status') == 'healthy':
            print("✅ API Server is running and healthy")
            return True
        print(f"❌ API Server returned status code: {response.status_code}")
        return False
    except requests.exceptions.ConnectionError:
        print(f"❌ Cannot connect to API server ({base_url})")
        return False


def test_geocoding(base_url):
    """Test the geocoding API endpoint"""
    try:
        response = requests.post(f'{base_url}/api/geocode',
                                 json={"address": "Times Square, New York, NY"}, timeout=10)
        data = response.json()
        if response.status_code == 200 and data.get('success'):
            print("✅ Geocoding API is working")
            return True
        print(f"❌ Geocoding failed: {data.get('error', 'Unknown error')}")
        return False
    except requests.exceptions.RequestException as e:
        print(f"❌ Error testing geocoding API: {e}")
        return False


def test_ratings_proxy(base_url):
    """Test that the ratings relay is reachable and has its key configured"""
    try:
        preflight = requests.options(f'{base_url}/api/ratings-proxy', timeout=5)
        if preflight.status_code != 204:
            print(f"❌ Ratings relay preflight returned: {preflight.status_code}")
            return False
        # No name: a configured relay answers {"data": null} without calling TripAdvisor
        response = requests.post(f'{base_url}/api/ratings-proxy',
                                 json={"latitude": 40.758, "longitude": -73.9855}, timeout=10)
        if response.status_code == 200:
            print("✅ Ratings relay is configured")
            return True
        print(f"❌ Ratings relay error: {response.json().get('message', response.status_code)}")
        return False
    except requests.exceptions.RequestException as e:
        print(f"❌ Error testing ratings relay: {e}")
        return False


def main():
    base_url = sys.argv[1].rstrip('/') if len(sys.argv) > 1 else BASE_URL
    print("🧪 Testing RouteStops Setup")
    print("="*50)

    tests = [
        ("API Server Health", test_api_server),
        ("Geocoding API", test_geocoding),
        ("Ratings Relay", test_ratings_proxy),
    ]

    passed = 0
    total = len(tests)

    for test_name, test_func in tests:
        print(f"\n🔍 Testing {test_name}...")
        if test_func(base_url):
            passed += 1
        time.sleep(1)  # Brief pause between tests

    print("\n" + "="*50)
    print(f"📊 Test Results: {passed}/{total} tests passed")

    if passed == total:
        print("🎉 All tests passed! The API is ready to use.")
        return True
    print("⚠️  Some tests failed. Please check the server setup.")
    return False


if __name__ == '__main__':
    success = main()
    sys.exit(0 if success else 1)
