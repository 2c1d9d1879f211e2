# tests_golden.py
# 간단 골든테스트: 신뢰하는 몇 가지 입력에 대해
# 연/월/일/시주 결과가 기대값과 정확히 일치하는지 검사합니다.

import sys
from datetime import datetime

from saju_calendar import LunarCalendarAdapter, FourPillars

def fourpillars_tuple(fp: FourPillars) -> tuple:
    return (fp.year, fp.month, fp.day, fp.hour)

def check_case(name: str, birth_local: str, tz: str,
               include_hour: bool = True,
               expected: tuple | None = None) -> bool:
    try:
        adapter = LunarCalendarAdapter(tz)
        dt = datetime.strptime(birth_local, "%Y-%m-%d %H:%M:%S")
        fp = adapter.pillars_at(dt, include_hour=include_hour)
        got = fourpillars_tuple(fp)
        if expected is None:
            print(f"[{name}] => {got} zodiac={fp.zodiac}  (기대값 미지정)")
            return True
        ok = (got == expected)
        status = "PASS" if ok else "FAIL"
        print(f"[{name}] {status}  got={got}, expected={expected}")
        return ok
    except Exception as e:
        print(f"[{name}] ERROR  {e}")
        return False

def main():
    print("=== 만세력 어댑터 골든 테스트 ===\n")
    all_ok = True

    # 1995-08-26 16:00 → 申시 (표준시 그대로)
    all_ok &= check_case(
        "1995-08-26 16:00",
        "1995-08-26 16:00:00", "Asia/Tokyo",
        expected=("乙亥", "甲申", "己丑", "壬申"),
    )

    # 1986-10-18 21:00 → 亥시 (경도 보정 없음)
    all_ok &= check_case(
        "1986-10-18 21:00",
        "1986-10-18 21:00:00", "Asia/Tokyo",
        expected=("丙寅", "戊戌", "乙未", "丁亥"),
    )

    # 출생시각 미입력(12:00 폴백) → 시주 없음
    all_ok &= check_case(
        "1990-05-15 no-time",
        "1990-05-15 12:00:00", "Asia/Tokyo",
        include_hour=False,
        expected=None,
    )

    print("\n=== SUMMARY ===")
    print("ALL PASS" if all_ok else "SOME FAIL")
    return all_ok

if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
