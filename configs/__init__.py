from configs.model_config import (
    GenerationConfig,
    ModelConfig,
    get_base_config,
    get_small_config,
)
