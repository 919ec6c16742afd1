"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults for layout, similarity, and clustering.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Semantic Graph Analytics API"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    database_url: str = "sqlite+aiosqlite:///./data/semantic_graph.db"
    openai_api_key: SecretStr | None = None
    openai_label_model: str = "gpt-4.1-mini"
    label_timeout_seconds: float = 10.0

    canvas_width: float = 4000.0
    canvas_height: float = 3000.0
    canvas_padding: float = 200.0
    grid_spacing: float = 200.0

    projection_min_items: int = 5
    projection_neighbors: int = 5
    projection_jitter: float = 50.0
    projection_timeout_seconds: float = 15.0
    projection_max_workers: int = 2
    umap_n_neighbors: int = 15
    umap_min_dist: float = 0.3
    umap_spread: float = 2.5
    umap_n_epochs: int = 200

    radial_distances: dict[str, float] = Field(
        default_factory=lambda: {"concept": 400.0, "entity": 500.0}
    )
    radial_fanout: int = 10
    radial_top_anchors: int = 5
    radial_min_separation: float = 100.0
    radial_collision_jitter: float = 25.0
    radial_default_weight: float = 0.5

    similarity_threshold: float = 0.7
    similarity_limit: int = 20
    hybrid_threshold: float = 0.65
    hybrid_candidate_threshold: float = 0.5
    hybrid_vector_weight: float = 0.70
    hybrid_tag_weight: float = 0.20
    hybrid_temporal_weight: float = 0.05
    hybrid_domain_weight: float = 0.05
    temporal_decay_days: float = 30.0

    cluster_min_size: int = 3
    cluster_max_k: int = 10
    cluster_max_iterations: int = 50
    cluster_label_sample: int = 10


@lru_cache()
def get_settings() -> Settings:
    return Settings()
