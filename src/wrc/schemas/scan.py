"""Pydantic models for rules, batches, page context and scan results.

Models that are persisted in the checkpoint or returned to callers use
camelCase aliases (``ruleId``, ``batchIndex`` …) so the stored JSON matches
the wire format.  Python code always uses the snake_case names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wrc.errors import InvalidURLError
from wrc.shared.urls import normalize_url

REASON_MAX_CHARS = 500
MAX_RULES_PER_SCAN = 100


class Rule(BaseModel):
    """A human-authored assertion about a page, checked by the judging oracle."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)


class ScanResult(BaseModel):
    """The verdict for one rule."""

    model_config = ConfigDict(populate_by_name=True)

    rule_id: str = Field(alias="ruleId")
    rule_title: str = Field(alias="ruleTitle")
    passed: bool
    reason: str

    @field_validator("reason", mode="before")
    @classmethod
    def cap_reason(cls, v: object) -> str:
        text = v if isinstance(v, str) else str(v)
        if len(text) > REASON_MAX_CHARS:
            return text[: REASON_MAX_CHARS - 3] + "..."
        return text

    @classmethod
    def failed(cls, rule: Rule, reason: str) -> "ScanResult":
        return cls(rule_id=rule.id, rule_title=rule.title, passed=False, reason=reason)


class Batch(BaseModel):
    """A bounded slice of the rule list, processed in ``batch_index`` order."""

    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(alias="batchId")
    url: str
    rules: list[Rule]
    batch_index: int = Field(alias="batchIndex", ge=0)
    total_batches: int = Field(alias="totalBatches", ge=1)
    timestamp: int


class LazyLoadReport(BaseModel):
    """Below-the-fold media compared against their lazy-load attribution."""

    images_with_lazy: int = 0
    images_without_lazy: int = 0
    videos_with_lazy: int = 0
    videos_without_lazy: int = 0
    image_examples: list[str] = []
    video_examples: list[str] = []

    @property
    def below_fold_total(self) -> int:
        return (
            self.images_with_lazy + self.images_without_lazy
            + self.videos_with_lazy + self.videos_without_lazy
        )

    @property
    def compliant(self) -> bool:
        return self.images_without_lazy == 0 and self.videos_without_lazy == 0


class ColorSample(BaseModel):
    """Deduplicated palette from computed styles."""

    palette: list[str] = []  # "text:#rrggbb" / "bg:#rrggbb"
    has_pure_black: bool = False
    available: bool = True


class PageSignals(BaseModel):
    """Structured signals extracted from a rendered page."""

    interactive: list[str] = []
    headings: list[str] = []
    breadcrumbs: str = ""
    colors: ColorSample = ColorSample()
    lazy_loading: LazyLoadReport | None = None


class PageContext(BaseModel):
    """What the renderer saw: visible text plus a formatted signals block."""

    url: str
    visible_text: str = ""
    structured_signals: str = ""
    signals: PageSignals = PageSignals()


class ScanRequest(BaseModel):
    """Validated input for a scan.  ``url`` is normalized on the way in."""

    url: str
    rules: list[Rule] = Field(min_length=1, max_length=MAX_RULES_PER_SCAN)

    @field_validator("url", mode="before")
    @classmethod
    def check_url(cls, v: object) -> str:
        if not isinstance(v, str):
            raise ValueError("URL must be a string")
        try:
            return normalize_url(v)
        except InvalidURLError as exc:
            raise ValueError(str(exc)) from exc

    @field_validator("rules")
    @classmethod
    def check_unique_ids(cls, v: list[Rule]) -> list[Rule]:
        seen: set[str] = set()
        duplicates: list[str] = []
        for rule in v:
            if rule.id in seen and rule.id not in duplicates:
                duplicates.append(rule.id)
            seen.add(rule.id)
        if duplicates:
            raise ValueError(f"Duplicate rule ids: {', '.join(duplicates)}")
        return v


class AggregatedResults(BaseModel):
    """Final deduplicated result list and tallies."""

    results: list[ScanResult] = []
    total: int = 0
    passed: int = 0
    failed: int = 0
