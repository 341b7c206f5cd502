"""Configuration settings for WalkTale."""

CONFIG = {
    "gps_poll_interval": 3,  # seconds
    "log_interval": 10,  # seconds between STATE log entries
    # Narration trigger
    "heartbeat_interval": 5,  # seconds between controller ticks
    "trigger_distance": 120,  # meters from the last anchor before narrating again
    "narration_cooldown": 30,  # seconds of silence after a narration
    "hard_lock": 15,  # seconds - floor beneath the cooldown, checked independently
    "failure_cooldown": 10,  # seconds - short cooldown after a provider failure
    "generation_timeout": 45,  # seconds before an in-flight generation counts as stuck
    "landmark_radii": (500, 1000),  # meters - narrow search first, then wide
    # Position filtering / movement
    "poor_accuracy_threshold": 100,  # meters - ignore worse fixes while a good one is fresh
    "good_fix_max_age": 60,  # seconds a good fix stays fresh for accuracy filtering
    "significant_move_distance": 5,  # meters
    "idle_timeout": 15 * 60,  # seconds without significant movement
    # Route tracking
    "arrival_radius": 50,  # meters
    "route_deviation_threshold": 50,  # meters - reroute if user strays this far
    "walking_speed": 1.3,  # m/s - remaining-time estimate while on a route
    "straight_line_speed": 1.4,  # m/s - duration estimate for straight-line routes
    # (min_lat, max_lat, min_lng, max_lng) - primary routing is skipped inside these
    "restricted_regions": [
        (33.0, 39.0, 124.0, 132.0),  # Korea
        (18.0, 54.0, 73.0, 123.0),  # mainland China
        (40.0, 54.0, 123.0, 135.0),  # north-east China
    ],
    # Providers
    "content_timeout": 15,  # seconds per content request
    "routing_timeout": 15,  # seconds per routing request
    "address_cache_radius": 1000,  # meters - reuse reverse geocoding inside this
    "gemini_model": "gemini-2.0-flash",
    "gemini_url": "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    "directions_url": "https://maps.googleapis.com/maps/api/directions/json",
    "osrm_url": "https://router.project-osrm.org/route/v1/walking",
    "nominatim_url": "https://nominatim.openstreetmap.org/reverse",
    "user_agent": "walktale/0.1 (walking tour narrator)",
    "osm_fetch_margin": 300,  # meters added around start/end when fetching streets
    "audio_wait_timeout": 10,  # seconds to wait for current audio before arrival greeting
    "speech_rate": 150,  # espeak words per minute
}


def merged(overrides=None) -> dict:
    """Return CONFIG with the given keys overridden."""
    if not overrides:
        return dict(CONFIG)
    return {**CONFIG, **overrides}
