#!/usr/bin/env python3
"""
Main entry point for the RouteStops API
"""

from routestops.app import app

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5001)
