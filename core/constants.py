# core/constants.py

from enum import Enum

# Queue capacities between the pipeline stages
WINDOW_QUEUE_SIZE = 4        # camera -> reducer, drop on full
SPECTRUM_QUEUE_SIZE = 64     # reducer -> container
JSON_QUEUE_SIZE = 16         # container -> feed server, drop on full
NEW_CLIENT_QUEUE_SIZE = 100  # accept thread -> broadcast loop

# 8 bit camera channels
CHANNEL_MAX = 255
NUM_CHANNELS = 3

# Low-pass filter runs at a fixed nominal sample rate
FILTER_SAMPLE_RATE_HZ = 2.0
FILTER_CUTOFF_MIN = 0.001
FILTER_CUTOFF_MAX = 1.0

# Allowed number of frames to average over
SPECTRUM_BUFFER_SIZE_MIN = 1
SPECTRUM_BUFFER_SIZE_MAX = 100

# Feed server
DEFAULT_FEED_HOST = "127.0.0.1"
DEFAULT_FEED_PORT = 8111
ACCEPT_POLL_INTERVAL_S = 0.2
CLIENT_SEND_TIMEOUT_S = 1.0

# Host tick, ms
UPDATE_INTERVAL_MS = 30

# CSV/Files
SPECTRUM_CSV_HEADER = "wavelength,r,g,b,sum"
REFERENCE_CSV_HEADER = "wavelength,value"
DEFAULT_CONFIG_FILE = "spectrometer.json"
TIMESTAMP_TIMESPEC = "milliseconds"

# Tungsten halogen reference range, nm (end exclusive)
TUNGSTEN_WAVELENGTH_START = 340
TUNGSTEN_WAVELENGTH_STOP = 2000

class ThreadId(Enum):
    CAMERA = "Camera"
    MAIN = "Main"

class StreamState(Enum):
    IDLE = "Idle"
    STARTING = "Starting"
    STREAMING = "Streaming"
    PAUSED = "Paused"
    STOPPED = "Stopped"
