from dotenv import load_dotenv

from .loader import (
    Settings,
    configure_logging,
    get_bool_env,
    get_int_env,
    get_str_env,
    load_settings,
)

load_dotenv()

__all__ = [
    "Settings",
    "configure_logging",
    "get_bool_env",
    "get_int_env",
    "get_str_env",
    "load_settings",
]
