"""Per-user directories for deepscan-client.

Directories follow the platform conventions exposed by ``platformdirs``.
"""

from pathlib import Path

from platformdirs import user_config_dir, user_data_dir

APP_NAME = "deepscan-client"


class GlobalPath:
    """Global path management for deepscan-client directories."""

    @classmethod
    def data(cls) -> str:
        """Application data directory."""
        return user_data_dir(APP_NAME)

    @classmethod
    def log(cls) -> str:
        """Log file directory."""
        return str(Path(cls.data()) / "log")

    @classmethod
    def config(cls) -> str:
        """Global settings directory."""
        return user_config_dir(APP_NAME)
