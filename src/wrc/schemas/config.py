"""Configuration schema — validates scan-config.yml."""

from pydantic import BaseModel, Field, model_validator


class NavigationConfig(BaseModel):
    """Headless-browser timing and site heuristics."""

    # Fallback chain timeouts (ms): domcontentloaded -> networkidle -> load
    dom_ready_timeout_ms: int = 20_000
    network_idle_timeout_ms: int = 40_000
    full_load_timeout_ms: int = 60_000

    settle_ms: int = 1_000
    scroll_steps: int = Field(default=5, ge=1)
    scroll_step_ms: int = 500
    final_settle_ms: int = 1_000

    image_wait_ms: int = 8_000
    image_sample: int = 15

    # Hosts with aggressive lazy-loading get an extra wait + eager media load
    slow_site_patterns: list[str] = ["amazon."]
    slow_site_wait_ms: int = 3_000
    eager_load_wait_ms: int = 2_000

    # Landing on one of these means bot mitigation kicked in
    blocked_markers: list[str] = ["captcha"]
    redirect_hosts: list[str] = ["google.com", "www.google.com"]

    viewport_width: int = 1920
    viewport_height: int = 1080

    @model_validator(mode="after")
    def check_timeouts_increase(self) -> "NavigationConfig":
        if not (
            self.dom_ready_timeout_ms
            <= self.network_idle_timeout_ms
            <= self.full_load_timeout_ms
        ):
            raise ValueError("Navigation timeouts must be non-decreasing (dom <= idle <= load)")
        return self


class ScanConfig(BaseModel):
    """Top-level configuration loaded from scan-config.yml.

    Everything has a default so an empty file (or no file) is valid; the
    URL and rules file can also come from the command line.
    """

    target_url: str = ""
    rules_file: str = ""

    # Oracle
    model: str = "gpt-4o-mini"
    openrouter_model: str = "openai/gpt-4o-mini"
    seed: int = 42

    # Scheduling
    batch_size: int = Field(default=5, ge=1, le=50)
    min_request_interval: float = Field(default=10.0, ge=0)  # seconds
    reuse_page_context: bool = False

    # Retry
    max_attempts: int = Field(default=5, ge=1)
    backoff_base: float = Field(default=1.0, gt=0)
    backoff_max: float = Field(default=30.0, gt=0)

    # Context limits (characters)
    visible_text_limit: int = Field(default=4_000, gt=0)
    context_limit: int = Field(default=6_000, gt=0)
    judge_context_limit: int = Field(default=3_000, gt=0)
    reason_max_chars: int = Field(default=500, gt=0, le=500)

    # Persistence / output
    checkpoint_dir: str = ".wrc-checkpoint"
    output_directory: str = "./output"

    navigation: NavigationConfig = NavigationConfig()

    @model_validator(mode="after")
    def check_backoff(self) -> "ScanConfig":
        if self.backoff_base > self.backoff_max:
            raise ValueError("backoff_base must not exceed backoff_max")
        return self

    @model_validator(mode="after")
    def check_context_limits(self) -> "ScanConfig":
        if self.judge_context_limit > self.context_limit:
            raise ValueError("judge_context_limit must not exceed context_limit")
        return self
