"""Risk analysis contracts."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class RedFlag(BaseModel):
    type: str
    description: str = ""


class RiskAssessment(BaseModel):
    """Model opinion on how suspicious an invoice looks (0 = clean, 10 = almost certainly fraud)."""

    risk_score: int
    summary: str = ""
    red_flags: list[RedFlag] = Field(default_factory=list)
    fallback: bool = False

    @field_validator("risk_score")
    @classmethod
    def score_range(cls, v: int) -> int:
        if not 0 <= v <= 10:
            msg = f"risk_score must be 0–10, got {v}"
            raise ValueError(msg)
        return v

    @classmethod
    def neutral(cls, reason: str) -> "RiskAssessment":
        return cls(
            risk_score=5,
            summary=f"Não foi possível completar a análise de risco: {reason}",
            red_flags=[
                RedFlag(
                    type="ANALYSIS_ERROR",
                    description="Ocorreu um erro durante a análise de risco.",
                )
            ],
            fallback=True,
        )
