"""
Call signaling configuration.

Loads ICE, media device and control API settings from environment variables.
`.env_local` / `.env.local` at the repository root are loaded first for local
development; they never override variables already exported.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

root = Path(__file__).parent.parent
for name in (".env_local", ".env.local"):
    p = root / name
    if p.exists():
        load_dotenv(p, override=False)


DEFAULT_STUN_SERVERS = (
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
)


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    Handles cases like:
    - "10  # comment" -> 10
    - "10" -> 10
    - None -> default
    """
    value = os.environ.get(key)
    if not value:
        return default

    if "#" in value:
        value = value.split("#")[0]

    value = value.strip()

    if not value:
        return default

    try:
        return int(value)
    except ValueError:
        return default


def _parse_list_env(key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.environ.get(key)
    if not value:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


@dataclass
class SignalingConfig:
    """Call signaling configuration."""

    # ICE
    stun_servers: tuple[str, ...] = DEFAULT_STUN_SERVERS
    ice_candidate_pool_size: int = 10
    turn_server_url: Optional[str] = None
    turn_username: Optional[str] = None
    turn_credential: Optional[str] = None

    # Caller identity shown on the receiver's incoming screen
    caller_name: str = "Doctor"

    # Local devices for the aiortc capture adapter (ffmpeg device + format)
    audio_device: str = "default"
    audio_format: Optional[str] = "pulse"
    video_device: str = "/dev/video0"
    video_format: Optional[str] = "v4l2"
    media_options: dict[str, str] = field(default_factory=lambda: {"video_size": "640x480"})

    # Control API
    control_api_host: str = "0.0.0.0"
    control_api_port: int = 8000
    log_level: str = "INFO"

    @property
    def has_turn_server(self) -> bool:
        """TURN is used only when URL and credentials are all set."""
        return all([self.turn_server_url, self.turn_username, self.turn_credential])

    @classmethod
    def from_env(cls) -> "SignalingConfig":
        """Load configuration from environment variables."""
        return cls(
            stun_servers=_parse_list_env("STUN_SERVERS", DEFAULT_STUN_SERVERS),
            ice_candidate_pool_size=_parse_int_env("ICE_CANDIDATE_POOL_SIZE", default=10),
            turn_server_url=os.environ.get("TURN_SERVER_URL"),
            turn_username=os.environ.get("TURN_USERNAME"),
            turn_credential=os.environ.get("TURN_CREDENTIAL"),
            caller_name=os.environ.get("CALLER_NAME", "Doctor"),
            audio_device=os.environ.get("MEDIA_AUDIO_DEVICE", "default"),
            audio_format=os.environ.get("MEDIA_AUDIO_FORMAT", "pulse") or None,
            video_device=os.environ.get("MEDIA_VIDEO_DEVICE", "/dev/video0"),
            video_format=os.environ.get("MEDIA_VIDEO_FORMAT", "v4l2") or None,
            control_api_host=os.environ.get("CONTROL_API_HOST", "0.0.0.0"),
            control_api_port=_parse_int_env("CONTROL_API_PORT", default=8000),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


def get_config() -> SignalingConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = SignalingConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[SignalingConfig] = None
