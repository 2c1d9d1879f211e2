# diary_core.py
# 일기 피처 계산: 오행 궁합 + 바이오리듬 + 테마 점수 + 오늘의 힌트 + 대운(10년 주기)
# 모든 함수는 입력(평가 시각, 문구 선택기 포함)에 대해 순수하며 예외를 던지지 않는다.

import math
import random
from dataclasses import dataclass, asdict, replace
from datetime import date, datetime, time
from typing import Callable, Sequence

from saju_calendar import FourPillars, GAN_LIST, ZHI_LIST

# 문구 선택기: 의미 버킷(문구 목록) → 문자열 하나
PhrasePicker = Callable[[Sequence[str]], str]

def random_picker(options: Sequence[str]) -> str:
    return random.choice(list(options))

def first_picker(options: Sequence[str]) -> str:
    return options[0]

# -------------------------
# 1단계: 천간 → 오행, 오행 궁합
# -------------------------
STEM_TO_WUXING = {
    "甲":"wood","乙":"wood",
    "丙":"fire","丁":"fire",
    "戊":"earth","己":"earth",
    "庚":"metal","辛":"metal",
    "壬":"water","癸":"water",
}
ELEMENTS = ["wood","fire","earth","metal","water"]
WUXING_LABEL_JA = {"wood":"木","fire":"火","earth":"土","metal":"金","water":"水"}

NEUTRAL_COMPAT = 0.5

# 행: 태어난 날의 오행, 열: 오늘의 오행
# 같은 오행 0.7 / 오늘이 나를 생함 0.9 / 내가 오늘을 생함 0.8 / 내가 오늘을 극함 0.6 / 오늘이 나를 극함 0.3
ELEMENT_COMPAT = {
    "wood":  {"wood":0.7, "fire":0.8, "earth":0.6, "metal":0.3, "water":0.9},
    "fire":  {"wood":0.9, "fire":0.7, "earth":0.8, "metal":0.6, "water":0.3},
    "earth": {"wood":0.3, "fire":0.9, "earth":0.7, "metal":0.8, "water":0.6},
    "metal": {"wood":0.6, "fire":0.3, "earth":0.9, "metal":0.7, "water":0.8},
    "water": {"wood":0.8, "fire":0.6, "earth":0.3, "metal":0.9, "water":0.7},
}

def get_element(pillar) -> str | None:
    if not isinstance(pillar, str) or len(pillar) < 2:
        return None
    return STEM_TO_WUXING.get(pillar[0])

def get_element_compatibility(e1: str | None, e2: str | None) -> float:
    if e1 is None or e2 is None:
        return NEUTRAL_COMPAT
    return ELEMENT_COMPAT.get(e1, {}).get(e2, NEUTRAL_COMPAT)

def _branch_of(pillar) -> str | None:
    if not isinstance(pillar, str) or len(pillar) < 2:
        return None
    return pillar[1] if pillar[1] in ZHI_LIST else None

# -------------------------
# 2단계: 바이오리듬
# -------------------------
BIORHYTHM_PERIODS = {"p": 23, "e": 28, "i": 33}
DAY_SECONDS = 86400

@dataclass(frozen=True)
class Biorhythm:
    p: int
    e: int
    i: int

    @property
    def average(self) -> float:
        return (self.p + self.e + self.i) / 3

def _as_instant(d, tzinfo) -> datetime:
    if isinstance(d, datetime):
        return d if d.tzinfo is not None or tzinfo is None else d.replace(tzinfo=tzinfo)
    return datetime.combine(d, time(0, 0)).replace(tzinfo=tzinfo)

def days_between(birth, now: datetime) -> int:
    birth_dt = _as_instant(birth, now.tzinfo)
    return math.floor((now - birth_dt).total_seconds() / DAY_SECONDS)

def compute_biorhythm(birth, now: datetime) -> Biorhythm:
    """
    경과 일수 d(음수 허용)에 대해 round(sin(2πd/주기)×100).
    birth가 date면 now와 같은 타임존의 자정으로 본다.
    """
    d = days_between(birth, now)
    values = {
        axis: int(round(math.sin(2 * math.pi * d / period) * 100))
        for axis, period in BIORHYTHM_PERIODS.items()
    }
    return Biorhythm(**values)

def energy_label(avg: float) -> str:
    if avg > 30:
        return "高揚"
    if avg > -30:
        return "調和"
    return "内省"

def time_of_day(instant: datetime) -> str:
    h = instant.hour
    if h < 11:
        return "朝"
    if h < 16:
        return "昼"
    return "夜"

# -------------------------
# 3단계: 기분(이모지) 버킷
# -------------------------
# 순서가 곧 우선순위 (앞의 버킷부터 매칭)
MOOD_BUCKETS = [
    ("joy",     0.20, {"😊","😆","😍","🥰","😄","😁","❤","💖","💕"}, {"joy","love","嬉しい","楽しい","幸せ","好き"}),
    ("calm",    0.12, {"😌","🌈","✨","🙏","🍀"},                     {"calm","hope","穏やか","安心","希望"}),
    ("energy",  0.08, {"💪","🔥","⚡","🤩"},                           {"energy","元気","やる気"}),
    ("tired",  -0.05, {"😴","💤","😪","😓","🥱"},                      {"tired","疲れ","眠い","だるい"}),
    ("anxious",-0.12, {"😰","😟","😨","😥"},                           {"anxious","不安","心配","焦り"}),
    ("sad",    -0.18, {"😢","🥺","😭","😞","💔"},                      {"sad","悲しい","寂しい","落ち込"}),
    ("angry",  -0.15, {"😡","😤","😠","💢"},                           {"angry","怒り","イライラ","ムカ"}),
]
NEUTRAL_MOOD = ("neutral", 0.0)

def _strip_variation(token: str) -> str:
    return token.replace("\ufe0f", "").strip()

def classify_mood(emoji, mood_text=None) -> tuple[str, float]:
    """이모지 우선, 모르는 이모지면 기분 텍스트의 키워드로. 둘 다 모르면 neutral."""
    if isinstance(emoji, str):
        token = _strip_variation(emoji)
        for name, bonus, emojis, _words in MOOD_BUCKETS:
            if token in emojis:
                return name, bonus
    if isinstance(mood_text, str) and mood_text.strip():
        text = mood_text.strip().lower()
        for name, bonus, _emojis, words in MOOD_BUCKETS:
            if any(w in text for w in words):
                return name, bonus
    return NEUTRAL_MOOD

# -------------------------
# 4단계: 테마 점수 (연애/금전/일/건강)
# -------------------------
W_BASE, W_BIO, W_MOOD = 0.4, 0.3, 0.3
HOUR_WEIGHT = 0.2
RECENTER = 0.25

@dataclass(frozen=True)
class ThemeScores:
    love: int
    money: int
    work: int
    health: int

    @property
    def average(self) -> float:
        return (self.love + self.money + self.work + self.health) / 4

def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))

def _theme_axes(bio: Biorhythm) -> dict:
    return {
        "love": bio.e,
        "money": bio.i,
        "work": (bio.p + bio.i) / 2,
        "health": bio.p,
    }

def compute_theme_scores(
    birth_pillars: FourPillars | None,
    today_pillars: FourPillars | None,
    biorhythm: Biorhythm,
    mood_token,
    has_hour_pillar: bool,
    *,
    mood_text=None,
) -> ThemeScores:
    birth_day = getattr(birth_pillars, "day", None)
    today_day = getattr(today_pillars, "day", None)
    base = get_element_compatibility(get_element(birth_day), get_element(today_day))

    _bucket, mood_bonus = classify_mood(mood_token, mood_text)

    hour_bonus = 0.0
    if has_hour_pillar:
        birth_hour = getattr(birth_pillars, "hour", None)
        today_hour = getattr(today_pillars, "hour", None)
        hour_compat = get_element_compatibility(get_element(birth_hour), get_element(today_hour))
        hour_bonus = (hour_compat - NEUTRAL_COMPAT) * HOUR_WEIGHT

    scores = {}
    for theme, axis in _theme_axes(biorhythm).items():
        bio_part = _clamp(axis / 100, -1.0, 1.0)
        raw = base * W_BASE + bio_part * W_BIO + mood_bonus * W_MOOD + hour_bonus + RECENTER
        scores[theme] = int(round(_clamp(raw, 0.0, 1.0) * 100))
    return ThemeScores(**scores)

# -------------------------
# 5단계: 오늘의 힌트 (색/숫자/방위/거리감)
# -------------------------
COLOR_TIERS = {
    "wood": {
        "bright": ["若葉グリーン","ミントグリーン","ライムグリーン","新緑の黄緑"],
        "mid":    ["セージグリーン","オリーブ","抹茶色","ティールグリーン"],
        "dark":   ["深緑","モスグリーン","フォレストグリーン"],
    },
    "fire": {
        "bright": ["コーラルピンク","サーモンオレンジ","明るい赤","ピーチ","サンセットオレンジ"],
        "mid":    ["テラコッタ","ローズ","朱色"],
        "dark":   ["ワインレッド","ボルドー","えんじ色"],
    },
    "earth": {
        "bright": ["レモンイエロー","クリーム色","マスタード"],
        "mid":    ["ベージュ","キャメル","サンドカラー","オークル"],
        "dark":   ["ブラウン","チョコレート色","カーキ"],
    },
    "metal": {
        "bright": ["ホワイト","パールホワイト","シルバー","シャンパンゴールド"],
        "mid":    ["ライトグレー","アイボリー","ゴールド"],
        "dark":   ["チャコールグレー","ガンメタル","アンティークゴールド"],
    },
    "water": {
        "bright": ["スカイブルー","アクアブルー","水色","ターコイズ"],
        "mid":    ["ブルーグレー","ラベンダー","藍色"],
        "dark":   ["ネイビー","ミッドナイトブルー","ブラック","紺色"],
    },
}
COLOR_CLASSES = {
    "wood":  {"bg": "bg-green-500",  "text": "text-green-50"},
    "fire":  {"bg": "bg-red-500",    "text": "text-red-50"},
    "earth": {"bg": "bg-yellow-600", "text": "text-yellow-50"},
    "metal": {"bg": "bg-gray-300",   "text": "text-gray-800"},
    "water": {"bg": "bg-blue-800",   "text": "text-blue-50"},
}
COLOR_TEMPLATES = [
    "今日のラッキーカラーは「{value}」。",
    "「{value}」を身につけると流れに乗りやすい日です。",
    "小物に「{value}」を取り入れてみて。",
]

# 지지 → 1..9 (10 이상은 접어서 중복 허용)
BRANCH_TO_NUMBER = {
    "子":1,"丑":2,"寅":3,"卯":4,"辰":5,"巳":6,
    "午":7,"未":8,"申":9,"酉":1,"戌":2,"亥":3,
}
DEFAULT_NUMBER = 5
NUMBER_TEMPLATES = [
    "ラッキーナンバーは {value}。",
    "数字の {value} がヒントをくれそう。",
    "今日は {value} にご縁がある日。",
]

ELEMENT_DIRECTION = {
    "wood":"east", "fire":"south", "earth":"center", "metal":"west", "water":"north",
}
DEFAULT_DIRECTION = "east"
NUDGE_THRESHOLD = 30
# 기본 방위마다 하나의 보정 규칙: (축, 부호, 보정 후 방위)
DIRECTION_NUDGES = {
    "east":   ("p", +1, "southeast"),
    "south":  ("i", -1, "southwest"),
    "center": ("e", -1, "southwest"),
    "west":   ("i", +1, "northwest"),
    "north":  ("e", +1, "northeast"),
}
DIRECTIONS = [
    "north","northeast","east","southeast","south","southwest","west","northwest","center",
]
DIRECTION_LABEL_JA = {
    "north":"北","northeast":"北東","east":"東","southeast":"南東",
    "south":"南","southwest":"南西","west":"西","northwest":"北西","center":"中央",
}
DIRECTION_TEMPLATES = [
    "{value}の方角に良い気が流れています。",
    "迷ったら{value}へ足を向けてみて。",
    "{value}側の席や道を選ぶと吉。",
]

DISTANCE_BANDS = [
    (75, "very_close"),
    (55, "close"),
    (40, "balanced"),
    (25, "some_distance"),
]
DISTANCE_FALLBACK_BAND = "withdraw"
DISTANCE_PHRASES = {
    "very_close":    ["大切な人のすぐそばに", "思い切って距離を縮めて", "心を開いて寄り添って"],
    "close":         ["いつもより少し近くに", "気軽に声をかけて", "自分から一歩近づいて"],
    "balanced":      ["ほどよい距離感で", "近すぎず遠すぎず", "相手のペースに合わせて"],
    "some_distance": ["少し距離を置いて", "一人の時間も大切に", "無理に合わせずに"],
    "withdraw":      ["静かに休んで", "今日は一歩引いて", "自分の内側に戻って"],
}
DISTANCE_TEMPLATES = [
    "人との距離は「{value}」がちょうどいい日。",
    "今日の人間関係は{value}過ごすのが吉。",
    "{value}いることで心が整います。",
]

HOUR_RANGES = {
    "子":"23:00-01:00","丑":"01:00-03:00","寅":"03:00-05:00","卯":"05:00-07:00",
    "辰":"07:00-09:00","巳":"09:00-11:00","午":"11:00-13:00","未":"13:00-15:00",
    "申":"15:00-17:00","酉":"17:00-19:00","戌":"19:00-21:00","亥":"21:00-23:00",
}
HOUR_TEMPLATES = [
    "あなたの生まれた時間帯（{value}）は集中しやすいひととき。",
    "{value}の時間に大事なことを進めてみて。",
]

def color_tier(bio_avg: float) -> str:
    if bio_avg > 40:
        return "bright"
    if bio_avg < -40:
        return "dark"
    return "mid"

def dominant_axis(bio: Biorhythm) -> tuple[str, int]:
    # 절댓값이 같으면 p → e → i 순
    axes = [("p", bio.p), ("e", bio.e), ("i", bio.i)]
    return max(axes, key=lambda kv: abs(kv[1]))

def lucky_number(day_branch: str | None, bio: Biorhythm) -> int:
    base = BRANCH_TO_NUMBER.get(day_branch, DEFAULT_NUMBER)
    _axis, value = dominant_axis(bio)
    step = (value > 0) - (value < 0)
    return (base + step - 1) % 9 + 1

def lucky_direction(element: str | None, bio: Biorhythm) -> tuple[str, str]:
    """(기본 방위, 보정 후 방위)"""
    base = ELEMENT_DIRECTION.get(element, DEFAULT_DIRECTION)
    axis, sign, nudged = DIRECTION_NUDGES[base]
    value = getattr(bio, axis)
    if sign > 0 and value > NUDGE_THRESHOLD:
        return base, nudged
    if sign < 0 and value < -NUDGE_THRESHOLD:
        return base, nudged
    return base, base

def distance_band(theme_avg: float) -> str:
    for threshold, band in DISTANCE_BANDS:
        if theme_avg >= threshold:
            return band
    return DISTANCE_FALLBACK_BAND

def compute_today_hints(
    today_element: str | None,
    biorhythm: Biorhythm,
    theme_avg: float,
    *,
    day_branch: str | None = None,
    birth_hour_branch: str | None = None,
    picker: PhrasePicker = random_picker,
) -> dict:
    element = today_element if today_element in COLOR_TIERS else "water"
    tier = color_tier(biorhythm.average)
    color_name = picker(COLOR_TIERS[element][tier])
    color = {
        "element": element,
        "tier": tier,
        "value": color_name,
        "classes": dict(COLOR_CLASSES[element]),
        "message": picker(COLOR_TEMPLATES).format(value=color_name),
    }

    n = lucky_number(day_branch, biorhythm)
    number = {
        "value": n,
        "message": picker(NUMBER_TEMPLATES).format(value=n),
    }

    base_dir, final_dir = lucky_direction(today_element, biorhythm)
    direction = {
        "base": base_dir,
        "value": final_dir,
        "label": DIRECTION_LABEL_JA[final_dir],
        "message": picker(DIRECTION_TEMPLATES).format(value=DIRECTION_LABEL_JA[final_dir]),
    }

    band = distance_band(theme_avg)
    phrase = picker(DISTANCE_PHRASES[band])
    distance = {
        "band": band,
        "value": phrase,
        "message": picker(DISTANCE_TEMPLATES).format(value=phrase),
    }

    hints = {"color": color, "number": number, "direction": direction, "distance": distance}
    if birth_hour_branch in HOUR_RANGES:
        window = HOUR_RANGES[birth_hour_branch]
        hints["hour"] = {
            "branch": birth_hour_branch,
            "value": window,
            "message": picker(HOUR_TEMPLATES).format(value=window),
        }
    return hints

# -------------------------
# 6단계: 대운(10년 주기) + 서술용 라벨
# -------------------------
DECADE_DESCRIPTIONS = [
    ["種をまく準備の時期", "土台づくりの十年"],
    ["芽吹きと学びの時期", "好奇心が育つ十年"],
    ["挑戦と成長の時期", "殻を破る十年", "勢いに乗る十年"],
    ["実りを形にする時期", "積み上げが花開く十年"],
    ["責任と安定の時期", "根を張る十年"],
    ["収穫と分かち合いの時期", "経験を人に渡す十年"],
    ["見直しと手放しの時期", "身軽になる十年"],
    ["内なる知恵が深まる時期", "静かに満ちる十年", "魂を磨く十年"],
]

@dataclass(frozen=True)
class DecadeCycle:
    age: int
    pillar: str
    description: str
    bucket: int

    def to_dict(self) -> dict:
        return {"age": self.age, "pillar": self.pillar, "description": self.description}

def compute_decade_cycle(
    birth_year: int,
    birth_month: int,
    current_age: int,
    *,
    picker: PhrasePicker = random_picker,
) -> DecadeCycle:
    decade = math.floor(current_age / 10)
    idx = decade + birth_month
    pillar = GAN_LIST[idx % 10] + ZHI_LIST[idx % 12]
    bucket = decade % len(DECADE_DESCRIPTIONS)
    return DecadeCycle(
        age=decade * 10,
        pillar=pillar,
        description=picker(DECADE_DESCRIPTIONS[bucket]),
        bucket=bucket,
    )

def compute_current_age(birth_date: date, today: date) -> int:
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return max(age, 0)

# -------------------------
# 전체 피처 묶음
# -------------------------
BIRTH_TIME_NOTE = "出生時刻あり（時柱も反映）"
NO_BIRTH_TIME_NOTE = "出生時刻未入力のため 12:00 で概算（時柱・時間帯ヒントは省略）"
HOUR_UNRESOLVED_NOTE = "出生時刻は入力済みだが時柱を算出できず（時柱・時間帯ヒントは省略）"

def _birth_time_note(has_birth_time: bool, has_hour: bool) -> str:
    if has_hour:
        return BIRTH_TIME_NOTE
    if has_birth_time:
        return HOUR_UNRESOLVED_NOTE
    return NO_BIRTH_TIME_NOTE

@dataclass
class DiaryFeatures:
    birth: FourPillars
    today: FourPillars
    biorhythm: Biorhythm
    mood_bucket: str
    theme_scores: ThemeScores
    today_hints: dict
    decade: DecadeCycle
    energy: str
    time_of_day: str
    note: str
    has_birth_time: bool
    evaluated_at: datetime

    def to_payload(self) -> dict:
        return {
            "biorhythm": asdict(self.biorhythm),
            "energy": self.energy,
            "timeOfDay": self.time_of_day,
            "mood": self.mood_bucket,
            "themeScores": asdict(self.theme_scores),
            "todayHints": self.today_hints,
            "saju": {
                "birth": self.birth.to_dict(),
                "today": self.today.to_dict(with_zodiac=False),
                "taiun": self.decade.to_dict(),
                "note": self.note,
            },
        }

def compute_diary_features(
    birth_pillars: FourPillars,
    today_pillars: FourPillars,
    birth_date: date,
    now: datetime,
    mood_token,
    *,
    mood_text=None,
    has_birth_time: bool = False,
    picker: PhrasePicker = random_picker,
) -> DiaryFeatures:
    """하나의 평가 시각(now)으로 모든 피처를 계산."""
    has_hour = has_birth_time and birth_pillars.hour is not None
    if not has_hour:
        birth_pillars = replace(birth_pillars, hour=None)

    bio = compute_biorhythm(birth_date, now)
    mood_bucket, _bonus = classify_mood(mood_token, mood_text)
    scores = compute_theme_scores(
        birth_pillars, today_pillars, bio, mood_token, has_hour, mood_text=mood_text,
    )
    hints = compute_today_hints(
        get_element(today_pillars.day),
        bio,
        scores.average,
        day_branch=_branch_of(today_pillars.day),
        birth_hour_branch=_branch_of(birth_pillars.hour) if has_hour else None,
        picker=picker,
    )
    age = compute_current_age(birth_date, now.date())
    decade = compute_decade_cycle(birth_date.year, birth_date.month, age, picker=picker)

    return DiaryFeatures(
        birth=birth_pillars,
        today=today_pillars,
        biorhythm=bio,
        mood_bucket=mood_bucket,
        theme_scores=scores,
        today_hints=hints,
        decade=decade,
        energy=energy_label(bio.average),
        time_of_day=time_of_day(now),
        note=_birth_time_note(has_birth_time, has_hour),
        has_birth_time=has_hour,
        evaluated_at=now,
    )
