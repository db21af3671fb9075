import os

from pydantic import BaseModel, Field

# Load settings from .env (set in docker-compose)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./test.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

# 'scored' ranks free teachers; 'first_free' takes the first available one
COVERAGE_STRATEGY = os.getenv("COVERAGE_STRATEGY", "scored")


class ScoringWeights(BaseModel):
    """Tunable weights for ranking substitute candidates."""
    base: int = 100
    workload_penalty: int = Field(5, ge=0)
    subject_match_bonus: int = Field(30, ge=0)
    recent_absence_bonus: int = Field(10, ge=0)
    recent_absence_window_days: int = Field(30, ge=0)
    back_to_back_penalty: int = Field(15, ge=0)
    neutral_score: int = 50

    @classmethod
    def from_env(cls) -> "ScoringWeights":
        return cls(
            base=int(os.getenv("SCORE_BASE", 100)),
            workload_penalty=int(os.getenv("SCORE_WORKLOAD_PENALTY", 5)),
            subject_match_bonus=int(os.getenv("SCORE_SUBJECT_MATCH_BONUS", 30)),
            recent_absence_bonus=int(os.getenv("SCORE_RECENT_ABSENCE_BONUS", 10)),
            recent_absence_window_days=int(os.getenv("SCORE_RECENT_ABSENCE_WINDOW_DAYS", 30)),
            back_to_back_penalty=int(os.getenv("SCORE_BACK_TO_BACK_PENALTY", 15)),
            neutral_score=int(os.getenv("SCORE_NEUTRAL", 50)),
        )

    @classmethod
    def availability_only(cls) -> "ScoringWeights":
        """Every candidate scores the base, so the first free teacher wins."""
        return cls(
            workload_penalty=0,
            subject_match_bonus=0,
            recent_absence_bonus=0,
            back_to_back_penalty=0,
        )


def get_scoring_weights(strategy: str | None = None) -> ScoringWeights:
    strategy = strategy or COVERAGE_STRATEGY
    if strategy == "first_free":
        return ScoringWeights.availability_only()
    if strategy != "scored":
        raise ValueError(f"Unknown coverage strategy: {strategy!r}")
    return ScoringWeights.from_env()


# Fail at startup, not halfway through marking an absence, on bad settings
SCORING_WEIGHTS = get_scoring_weights()
