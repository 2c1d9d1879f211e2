# saju_calendar.py
# 만세력 어댑터: lunar-python EightChar → 연/월/일/시 기둥 + 띠
# 일기 서비스는 이 모듈을 통해서만 기둥을 얻는다 (직접 조립하지 않음)

import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from lunar_python import Solar

logger = logging.getLogger("saju_calendar")

DEFAULT_TZ = "Asia/Tokyo"
FALLBACK_BIRTH_TIME = time(12, 0)

GAN_LIST = ["甲","乙","丙","丁","戊","己","庚","辛","壬","癸"]
ZHI_LIST = ["子","丑","寅","卯","辰","巳","午","未","申","酉","戌","亥"]

# -------------------------
# 공통 데이터 구조
# -------------------------
@dataclass
class FourPillars:
    year: str | None
    month: str | None
    day: str | None
    hour: str | None = None
    zodiac: str | None = None

    def to_dict(self, *, with_zodiac: bool = True) -> dict:
        out = asdict(self)
        if not with_zodiac:
            out.pop("zodiac")
        return out

def is_valid_pillar(value) -> bool:
    return (
        isinstance(value, str) and len(value) == 2
        and value[0] in GAN_LIST and value[1] in ZHI_LIST
    )

# -------------------------
# 입력 정규화
# -------------------------
def parse_birth_time(raw: str | None) -> time | None:
    """'HH:MM' 형식일 때만 time 반환. 빈 값/형식 오류는 None (호출 측에서 12:00 폴백)."""
    if not isinstance(raw, str):
        return None
    raw = raw.strip()
    if len(raw) != 5 or raw[2] != ":":
        return None
    try:
        return datetime.strptime(raw, "%H:%M").time()
    except ValueError:
        return None

def birth_instant(birth_date: date, birth_time: time | None, tz: str = DEFAULT_TZ) -> datetime:
    t = birth_time or FALLBACK_BIRTH_TIME
    return datetime.combine(birth_date, t).replace(tzinfo=ZoneInfo(tz))

# -------------------------
# lunar-python 호출부
# -------------------------
def _eight_char_at(local_dt: datetime):
    sol = Solar.fromYmdHms(local_dt.year, local_dt.month, local_dt.day,
                           local_dt.hour, local_dt.minute, local_dt.second)
    lunar = sol.getLunar()
    return lunar, lunar.getEightChar()

def _get_part_from_eightchar(ec_obj, part_names: list[str]) -> str | None:
    """
    lunar_python 버전별로 이름이 다를 수 있으므로 가능한 조합을 시도.
    우선순위: get{Part}() (결합 문자열) → get{Part}Gan()/get{Part}Zhi()
    part_names 예: ["Year"], ["Month"], ["Day"], ["Time","Hour"]
    """
    for part in part_names:
        get_both = getattr(ec_obj, f"get{part}", None)
        if callable(get_both):
            val = get_both()
            if is_valid_pillar(val):
                return val

        get_gan = getattr(ec_obj, f"get{part}Gan", None)
        get_zhi = getattr(ec_obj, f"get{part}Zhi", None)
        if callable(get_gan) and callable(get_zhi):
            val = f"{get_gan()}{get_zhi()}"
            if is_valid_pillar(val):
                return val
    return None

def _zodiac_of(lunar) -> str | None:
    # 연주와 같은 입춘 경계를 쓰는 띠를 우선
    for name in ("getYearShengXiaoByLiChun", "getYearShengXiao"):
        m = getattr(lunar, name, None)
        if callable(m):
            val = m()
            if isinstance(val, str) and val:
                return val
    return None

class LunarCalendarAdapter:
    """
    로컬 시각 → 네 기둥. 연/월은 절기(입춘) 기준, 일은 자정 기준(EightChar 기본 sect).
    시주는 resolve_hour_pillar()로만 얻고, 풀 수 없으면 None (재시도하지 않음).
    """

    def __init__(self, tz: str = DEFAULT_TZ):
        self.tz = ZoneInfo(tz)

    def _localize(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self.tz)
        return instant.astimezone(self.tz)

    def resolve_hour_pillar(self, instant: datetime) -> str | None:
        local_dt = self._localize(instant)
        try:
            _lunar, ec = _eight_char_at(local_dt)
            return _get_part_from_eightchar(ec, ["Time", "Hour"])
        except Exception:
            logger.warning("hour pillar unavailable for %s", local_dt.isoformat())
            return None

    def pillars_at(self, instant: datetime, *, include_hour: bool = True) -> FourPillars:
        local_dt = self._localize(instant)
        lunar, ec = _eight_char_at(local_dt)
        fp = FourPillars(
            year=_get_part_from_eightchar(ec, ["Year"]),
            month=_get_part_from_eightchar(ec, ["Month"]),
            day=_get_part_from_eightchar(ec, ["Day"]),
            zodiac=_zodiac_of(lunar),
        )
        if include_hour:
            fp.hour = self.resolve_hour_pillar(local_dt)
        return fp
