#!/usr/bin/env python3
"""
WalkTale - Narrated walking tours

Usage:
    python -m walktale DEST_LAT DEST_LON [options]

Options:
    --name NAME           Destination name used in greetings
    --language LANG       Narration language (default: English)
    --lat LAT             Starting latitude (for testing without GPS)
    --lon LON             Starting longitude (for testing without GPS)
    --record FILE         Record GPS trace to JSON file for debugging
    --playback FILE       Playback GPS trace from JSON file
    --speed FACTOR        Playback/simulation speed multiplier (default: 1.0)
    --simulate            Walk the route virtually (requires --lat/--lon)
    --log FILE            Log file path (default: walktale_TIMESTAMP.log)
    --report FILE         Write the session report to a JSON file
    --debug-server        Run the WebSocket debug feed
    --fallback-router R   Fallback routing: osrm (default) or osm (offline graph)
"""

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

from .app import TourGuide
from .debug_server import WebSocketGPS
from .gps import GPSPlayback, GPSRecorder, SimulatedGPS
from .models import Position


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="WalkTale - Narrated walking tours"
    )
    parser.add_argument("dest_lat", type=float, help="Destination latitude")
    parser.add_argument("dest_lon", type=float, help="Destination longitude")
    parser.add_argument("--name", default="your destination",
                        help="Destination name used in greetings")
    parser.add_argument("--language", default="English",
                        help="Narration language (default: English)")
    parser.add_argument("--lat", type=float, metavar="LAT",
                        help="Starting latitude (for testing without GPS)")
    parser.add_argument("--lon", type=float, metavar="LON",
                        help="Starting longitude (for testing without GPS)")
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback GPS trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback/simulation speed multiplier (default: 1.0)")
    parser.add_argument("--simulate", action="store_true",
                        help="Walk the route virtually (requires --lat and --lon)")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: walktale_TIMESTAMP.log)")
    parser.add_argument("--report", metavar="FILE",
                        help="Write the session report to a JSON file")
    parser.add_argument("--debug-server", action="store_true",
                        help="Run the WebSocket debug feed (send location messages to move)")
    parser.add_argument("--fallback-router", choices=("osrm", "osm"), default="osrm",
                        help="Fallback routing provider (default: osrm)")
    parser.add_argument("--gemini-key", default=os.environ.get("GEMINI_API_KEY"),
                        help="Gemini API key (default: $GEMINI_API_KEY)")
    parser.add_argument("--maps-key", default=os.environ.get("GOOGLE_MAPS_API_KEY"),
                        help="Google Maps API key (default: $GOOGLE_MAPS_API_KEY)")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Validate lat/lon - must provide both or neither
    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be used together")
    if args.simulate and args.lat is None:
        parser.error("--simulate requires --lat and --lon")
    if args.playback and args.record:
        parser.error("--playback and --record cannot be combined")
    if not args.gemini_key:
        parser.error("a Gemini API key is required (--gemini-key or GEMINI_API_KEY)")

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"walktale_{timestamp}.log"

    start_location = (args.lat, args.lon) if args.lat is not None else None
    guide = TourGuide(
        gemini_api_key=args.gemini_key,
        maps_api_key=args.maps_key,
        destination_name=args.name,
        language=args.language,
        log_path=log_path,
        report_path=args.report,
        start_location=start_location,
        fallback_router=args.fallback_router,
        debug_server=args.debug_server,
    )
    if not args.maps_key:
        guide.logger.log("No Google Maps key, using fallback routing only")

    # Set up GPS source
    if args.simulate:
        guide.set_gps_source(SimulatedGPS(Position(lat=args.lat, lon=args.lon), speed=args.speed))
    elif args.debug_server:
        guide.set_gps_source(WebSocketGPS(guide.debug_server))
    elif args.playback:
        if not Path(args.playback).exists():
            print(f"Playback file not found: {args.playback}")
            sys.exit(1)
        guide.set_gps_source(GPSPlayback(args.playback, args.speed))
    elif args.record:
        guide.set_gps_source(GPSRecorder(guide.gps, args.record))

    guide.run(Position(lat=args.dest_lat, lon=args.dest_lon))


if __name__ == "__main__":
    main()
