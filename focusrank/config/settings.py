from typing import Literal, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

# Project root for absolute paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class AppSettings(BaseSettings):
    app_name: str = "focusrank"
    log_level: str = "INFO"
    model_config = SettingsConfigDict(
        env_prefix='FOCUSRANK_APP_',
        extra='ignore',
        case_sensitive=False
    )


class FocusSettings(BaseSettings):
    """Tier sizes, thresholds and score weights for the focus state machine."""
    min_active: int = Field(3, description="Floor of the active tier")
    max_active: int = Field(12, description="Ceiling of the active tier")
    max_latent: int = Field(8, description="Ceiling of the latent tier")
    history_size: int = Field(10, description="Conversational turns kept for extraction context")
    context_turns: int = Field(5, description="Prior turns handed to the extractor")
    merge_similarity_threshold: float = Field(0.70, description="Jaccard threshold for fuzzy label merges")
    active_salience_threshold: float = Field(0.3, description="Base salience needed for the active tier")
    latent_salience_threshold: float = Field(0.2, description="Salience needed for the latent tier")
    fading_salience_threshold: float = Field(0.1, description="Below this a focus is fading")
    prune_after_seconds: float = Field(7200.0, description="Idle time before a non-active focus may be pruned")
    extraction_timeout_seconds: float = Field(10.0, description="Upper bound for one extractor call")

    # Slow-tail recency decay: 1 / (1 + (dt / tau) ** beta)
    recency_tau_seconds: float = 300.0
    recency_beta: float = 0.7
    repetition_saturation: int = 20

    weight_recency: float = 0.25
    weight_repetition: float = 0.20
    weight_emotion: float = 0.15
    weight_causal: float = 0.20
    weight_drift: float = 0.20

    model_config = SettingsConfigDict(
        env_prefix='FOCUSRANK_FOCUS_',
        extra='ignore',
        case_sensitive=False
    )


class PrioritySettings(BaseSettings):
    """Defaults for the dynamic priority scorer (P = t1*f_time + t2*f_react + t3*f_sem + t4*f_diff)."""
    decay_lambda: float = Field(0.01, description="Temporal decay per day")
    alpha: float = Field(1.0, description="Activation strength")
    beta: float = Field(0.01, description="Forgetting speed per day")
    gamma: float = Field(0.5, description="Graph diffusion decay per hop")
    max_hops: int = 1
    theta1: float = 0.3
    theta2: float = 0.4
    theta3: float = 0.2
    theta4: float = 0.1
    strategy: Literal["multiplicative", "softmax"] = "multiplicative"
    temporal_boost_min: float = Field(2.0, description="Smallest lambda multiplier for relative time expressions")
    temporal_boost_max: float = Field(5.0, description="Largest lambda multiplier for relative time expressions")

    model_config = SettingsConfigDict(
        env_prefix='FOCUSRANK_PRIORITY_',
        extra='ignore',
        case_sensitive=False
    )


class RetrievalSettings(BaseSettings):
    top_k: int = Field(30, description="Candidates fetched per topic from the vector index")
    similarity_threshold: float = Field(0.2, description="Minimum raw cosine for a candidate")
    max_pool_size: int = Field(20, description="Capacity of the result pool")
    embedding_weight: float = 0.4
    constraint_weight: float = 0.5
    recency_weight: float = 0.1
    staleness_hours: float = 24.0
    freshness_window_hours: float = 48.0
    temporal_proximity_days: float = 30.0
    temporal_proximity_weight: float = 0.3
    location_similarity_weight: float = 0.3
    freshness_weight: float = 0.2
    default_top_topics: int = Field(5, description="Focus labels used as topics when none are given")

    model_config = SettingsConfigDict(
        env_prefix='FOCUSRANK_RETRIEVAL_',
        extra='ignore',
        case_sensitive=False
    )


class LLMSettings(BaseSettings):
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "qwen2.5:7b-instruct"
    request_timeout_seconds: float = 30.0
    model_config = SettingsConfigDict(
        env_prefix='FOCUSRANK_LLM_',
        extra='ignore',
        case_sensitive=False
    )


class StorageSettings(BaseSettings):
    data_dir: Optional[str] = Field(None, description="Directory for node state; None keeps state in memory")
    chroma_collection: str = "focusrank_events"
    model_config = SettingsConfigDict(
        env_prefix='FOCUSRANK_STORAGE_',
        extra='ignore',
        case_sensitive=False
    )


class LoggingSettings(BaseModel):
    level: str = Field("INFO")
    format: str = Field("%(asctime)s | %(levelname)-8s | %(name)-35s | %(module)s.%(funcName)s:%(lineno)d - %(message)s")


class Settings(BaseSettings):
    app: AppSettings = Field(default_factory=AppSettings)
    focus: FocusSettings = Field(default_factory=FocusSettings)
    priority: PrioritySettings = Field(default_factory=PrioritySettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = LoggingSettings()
    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / '.env'),
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
        env_nested_delimiter='__',
        env_prefix="FOCUSRANK_"
    )


settings = Settings()
