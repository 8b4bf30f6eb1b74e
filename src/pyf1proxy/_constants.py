"""Internal constants shared across the library."""

SIGNALR_USER_AGENT = "BestHTTP"
SIGNALR_CLIENT_PROTOCOL = "1.5"
SIGNALR_HUB = "Streaming"

# Topics requested from the native live timing hub.  ``.z`` topics arrive
# base64 encoded and raw-deflate compressed.
SIGNALR_TOPICS: tuple[str, ...] = (
    "Heartbeat",
    "CarData.z",
    "Position.z",
    "ExtrapolatedClock",
    "TopThree",
    "TimingStats",
    "TimingAppData",
    "WeatherData",
    "TrackStatus",
    "SessionStatus",
    "DriverList",
    "RaceControlMessages",
    "SessionInfo",
    "SessionData",
    "LapCount",
    "TimingData",
    "TeamRadio",
    "ChampionshipPrediction",
)

# Session status values reported once a session is no longer running.
SESSION_ENDED_STATUSES: frozenset[str] = frozenset({"Ends", "Ended", "Finalised", "Finished"})

MQTT_TOPICS: tuple[str, ...] = (
    "v1/sessions",
    "v1/drivers",
    "v1/position",
    "v1/intervals",
    "v1/laps",
    "v1/location",
    "v1/car_data",
    "v1/race_control",
    "v1/team_radio",
    "v1/weather",
    "v1/stints",
)

# Access tokens are renewed this many seconds before they expire.
TOKEN_RENEW_MARGIN_SECONDS = 300

RACE_CONTROL_LIMIT = 50
TEAM_RADIO_LIMIT = 30

# Relay backoff grows linearly up to this multiple of the base delay.
RELAY_BACKOFF_CAP = 5

# Starting grid positions are the ones reported within this window of the
# first position report.
STARTING_GRID_WINDOW_SECONDS = 2.0

# Lap and sector durations above these are timing artefacts (pit lane,
# red flag) and are not shown as lap times.
MAX_LAP_SECONDS = 300.0
MAX_VALID_LAP_SECONDS = 150.0
MAX_SECTOR_SECONDS = 60.0

DEFAULT_WEATHER: dict[str, str] = {
    "AirTemp": "28",
    "Humidity": "45",
    "Pressure": "1015",
    "Rainfall": "0",
    "TrackTemp": "35",
    "WindDirection": "180",
    "WindSpeed": "4.2",
}
