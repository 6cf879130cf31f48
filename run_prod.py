#!/usr/bin/env python3
"""
Production runner for RouteStops
- Serves the Flask API (routestops.app) including the ratings relay
- Loads .env for GEOAPIFY_API_KEY, TRIPADVISOR_API_KEY and other settings

Usage:
  python3 run_prod.py

Environment:
  PORT=8000 (default)          # Port to bind
  HOST=0.0.0.0 (default)       # Host interface
  GEOAPIFY_API_KEY=...         # Required for searches
  TRIPADVISOR_API_KEY=...      # Required by the ratings relay
  RATINGS_PROXY_URL=...        # optional: remote relay; unset uses the relay mounted in this app
  RATINGS_ENRICHMENT_ENABLED=1 # optional: set to 0 to skip ratings lookups
  ENRICHMENT_DELAY_MS=500      # optional: pause between ratings lookups
"""

import os
import ssl
from pathlib import Path

from dotenv import load_dotenv
from werkzeug.middleware.proxy_fix import ProxyFix

PROJECT_ROOT = Path(__file__).resolve().parent

# Load env from .env if present
load_dotenv(dotenv_path=PROJECT_ROOT / '.env')

# Import the Flask API app
from routestops.app import app as api_app  # noqa: E402

# Respect reverse proxy headers (X-Forwarded-*) when behind a proxy/HTTPS terminator
if os.getenv('TRUST_PROXY_HEADERS', '1') not in ('0', 'false', 'False', 'no', 'off'):
    # Trust a single proxy hop by default; tune via env
    x_for = int(os.getenv('PROXY_FIX_X_FOR', '1'))
    x_proto = int(os.getenv('PROXY_FIX_X_PROTO', '1'))
    x_host = int(os.getenv('PROXY_FIX_X_HOST', '1'))
    x_port = int(os.getenv('PROXY_FIX_X_PORT', '1'))
    x_prefix = int(os.getenv('PROXY_FIX_X_PREFIX', '1'))
    api_app.wsgi_app = ProxyFix(api_app.wsgi_app, x_for=x_for, x_proto=x_proto, x_host=x_host, x_port=x_port, x_prefix=x_prefix)

application = api_app


def main():
    host = os.getenv('HOST', '0.0.0.0')
    try:
        port = int(os.getenv('PORT', '8000'))
    except ValueError:
        port = 8000

    api_key = os.getenv('GEOAPIFY_API_KEY')
    if not api_key or api_key == 'your_api_key_here':
        print("\n" + "="*60)
        print("Warning: GEOAPIFY_API_KEY is not configured.")
        print("The API will start, but searches will answer 500.")
        print("Set it in your environment or .env file.")
        print("="*60 + "\n")

    ssl_cert = os.getenv('SSL_CERTFILE') or os.getenv('SSL_CERT')
    ssl_key = os.getenv('SSL_KEYFILE') or os.getenv('SSL_KEY')
    ssl_ca = os.getenv('SSL_CA_FILE') or os.getenv('SSL_CA')

    if ssl_cert and ssl_key:
        print(f"\n🔐 Starting RouteStops (prod) on https://{host}:{port}")
        print(" - TLS: using provided SSL cert and key")
        print(" - API: /api/*")

        # Build SSL context
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        if ssl_ca:
            context.load_verify_locations(ssl_ca)
        context.load_cert_chain(certfile=ssl_cert, keyfile=ssl_key)

        # Use Werkzeug's run_simple to serve HTTPS directly
        from werkzeug.serving import run_simple
        run_simple(hostname=host, port=port, application=application, ssl_context=context, threaded=True)
    else:
        print(f"\n🚀 Starting RouteStops (prod) on http://{host}:{port}")
        print(" - API: /api/*")

        from waitress import serve
        print("Using waitress WSGI server")
        serve(application, host=host, port=port, threads=int(os.getenv('WSGI_THREADS', '8')))


if __name__ == '__main__':
    main()
