"""Lottery variants, their number pools, and historical draw records."""

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LotteryType(str, Enum):
    SSQ = "ssq"        # double colour ball
    DLT = "dlt"        # super lotto
    FC3D = "fc3d"
    PL3 = "pl3"
    PL5 = "pl5"
    CUSTOM = "custom"


# Maps lottery_type -> number pool sizes shared by feature extraction,
# every model, and both ensemble paths.
LOTTERY_CONFIG: dict[LotteryType, dict[str, int]] = {
    LotteryType.SSQ: {"main_count": 6, "max_number": 33, "special_count": 1, "special_max": 16},
    LotteryType.DLT: {"main_count": 5, "max_number": 35, "special_count": 2, "special_max": 12},
    LotteryType.FC3D: {"main_count": 3, "max_number": 9, "special_count": 0, "special_max": 0},
    LotteryType.PL3: {"main_count": 3, "max_number": 9, "special_count": 0, "special_max": 0},
    LotteryType.PL5: {"main_count": 5, "max_number": 9, "special_count": 0, "special_max": 0},
    LotteryType.CUSTOM: {"main_count": 6, "max_number": 49, "special_count": 0, "special_max": 0},
}


def main_count(lottery_type: LotteryType) -> int:
    return LOTTERY_CONFIG[LotteryType(lottery_type)]["main_count"]


def max_number(lottery_type: LotteryType) -> int:
    return LOTTERY_CONFIG[LotteryType(lottery_type)]["max_number"]


def special_count(lottery_type: LotteryType) -> int:
    return LOTTERY_CONFIG[LotteryType(lottery_type)]["special_count"]


def special_max(lottery_type: LotteryType) -> int:
    return LOTTERY_CONFIG[LotteryType(lottery_type)]["special_max"]


class Drawing(BaseModel):
    """One historical draw as delivered by the data collector."""

    model_config = ConfigDict(frozen=True)

    lottery_type: LotteryType
    draw_number: str
    draw_date: date
    winning_numbers: list[int]
    special_numbers: list[int] | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def numbers_sum(self) -> int:
        return sum(self.winning_numbers)
