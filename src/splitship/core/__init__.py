from splitship.core.config import (
    ConsumerConfig,
    PackingConfig,
    SplitShipConfig,
    load_config_from_env,
)

__all__ = [
    "ConsumerConfig",
    "PackingConfig",
    "SplitShipConfig",
    "load_config_from_env",
]
