from fsi_bridge.config.loader import (
    FsiBridgeConfig,
    FsiDisplayConfig,
    FsiProcessConfig,
    FsiProtocolConfig,
    load_config,
    load_config_dicts,
    load_default_config,
)

__all__ = [
    "FsiBridgeConfig",
    "FsiDisplayConfig",
    "FsiProcessConfig",
    "FsiProtocolConfig",
    "load_config",
    "load_config_dicts",
    "load_default_config",
]
