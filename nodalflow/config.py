from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "NODALFLOW_", "case_sensitive": False}

    # Iteration control for solve_power_flow
    tolerance: float = 1e-8
    max_iterations: int = 100

    # System base used by build_system_from_config
    base_power_mva: float = 100.0

    # Logging
    log_json: bool = False
    log_level: str = "INFO"


settings = Settings()
