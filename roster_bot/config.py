import os
from dataclasses import dataclass

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class Settings:
    token: str
    data_dir: str = "roster_data"
    # Set to True to sync commands per guild for faster propagation
    sync_per_guild: bool = True


def load_settings() -> Settings:
    token = os.getenv("DISCORD_BOT_TOKEN", "").strip()
    data_dir = os.getenv("ROSTER_DATA_DIR", "").strip()
    if data_dir:
        return Settings(token=token, data_dir=data_dir)
    return Settings(token=token or "")


class GuildConfig(BaseModel):
    """Per-guild team settings, editable by the server's managers."""

    # Maximum number of members a team may hold.
    team_capacity: int = Field(default=2, gt=0)
    # Prefix for team identifiers, e.g. "g" for "g07". Identifiers double as
    # file names, so only letters, digits, "_" and "-" are allowed.
    team_prefix: str = Field(default="g", pattern=r"^[A-Za-z0-9_-]+$")
