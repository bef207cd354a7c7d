"""Shared constants and defaults."""

APP_NAME = "lilibet"

DEV_SERVER_URL = "http://localhost:3001"
PRODUCTION_SERVER_URL = "https://lilibet-backend-production.up.railway.app"

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 1
DEFAULT_BITRATE = 64000
DEFAULT_TRANSCRIPTION_TIMEOUT = 20.0
DEFAULT_REQUEST_TIMEOUT = 30.0

DEFAULT_LANGUAGE = "en-GB"
DEFAULT_PITCH = 1.1
DEFAULT_RATE = 1.2
DEFAULT_VOLUME = 0.8

DEFAULT_MODEL = "openai"

VALID_MODELS = ("openai", "claude")
VALID_RECORDER_BACKENDS = ("auto", "native", "stream")
VALID_SPEECH_BACKENDS = ("auto", "queued", "process")
VALID_AGE_GROUPS = ("elementary", "middle", "high")

FALLBACK_REPLY = "That's a great question! What do you think?"
