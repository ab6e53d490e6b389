from pydantic import Field

from app.models.base import CamelModel

TIME_WINDOWS = ("Morning", "Afternoon", "Evening", "Night")


def time_window_for_hour(hour: int) -> str:
    """Morning [05,12), Afternoon [12,17), Evening [17,21), Night otherwise."""
    if 5 <= hour < 12:
        return "Morning"
    if 12 <= hour < 17:
        return "Afternoon"
    if 17 <= hour < 21:
        return "Evening"
    return "Night"


class WindowStats(CamelModel):
    total: int = 0
    successful: int = 0
    success_rate: float = Field(0.0, description="Percent of submissions that got a response")


class SubmissionTimeStats(CamelModel):
    total_applications: int
    avg_days_early: float
    best_time_window: str | None = None
    response_success_rate: float
    response_by_window: dict[str, WindowStats]
