# api_server.py
import os
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

# --- 로깅 기본 설정 ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("diary_api")

# =========================
# ENV 로딩 (dotenv)
# =========================
def _ensure_env_loaded():
    for candidate in (".env", "OPENAI_API_KEY.env"):
        p = Path(__file__).with_name(candidate)
        if p.exists():
            load_dotenv(dotenv_path=p, override=True, encoding="utf-8")
            logger.info("[env] dotenv loaded: %s", p)
            break
    logger.info("[env] has OPENAI_API_KEY? %s", bool(os.environ.get("OPENAI_API_KEY")))

_ensure_env_loaded()

from saju_calendar import LunarCalendarAdapter, birth_instant, parse_birth_time
from diary_core import compute_biorhythm, compute_diary_features, energy_label, time_of_day
from diary_llm import (
    DiaryError,
    DiaryLLMClient,
    InputValidationError,
    build_diary_prompt,
)

DIARY_TZ = os.environ.get("DIARY_TZ", "Asia/Tokyo")

app = FastAPI(title="Spiritual Diary API", version="1.0")

# CORS (초기 개발 단계에서는 * 허용, 운영에서는 도메인 제한)
def get_cors_origins():
    """환경에 따른 CORS 설정"""
    env = os.environ.get("ENV", "development")
    if env == "production":
        allowed_origins = os.environ.get("ALLOWED_ORIGINS", "").split(",")
        return [origin.strip() for origin in allowed_origins if origin.strip()]
    return ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =========================
# 정적 파일/루트 페이지
# =========================
PUBLIC_DIR = Path(__file__).with_name("public")

# check_dir=False: 폴더가 없어도 서버가 죽지 않도록
app.mount(
    "/static",
    StaticFiles(directory=str(PUBLIC_DIR), html=False, check_dir=False),
    name="static",
)

@app.get("/", response_class=HTMLResponse)
def serve_index():
    index_path = PUBLIC_DIR / "index.html"
    if index_path.exists():
        return FileResponse(str(index_path))
    # 화면 없이 API만 띄운 경우
    html = (
        "<html><body><h3>Spiritual Diary API</h3>"
        "<p>POST <code>/api/analyze</code> · GET <code>/api/biorhythm</code> · "
        "POST <code>/api/placeholders</code> · <code>/docs</code></p></body></html>"
    )
    return HTMLResponse(content=html)

# =========================
# 에러 → 응답 매핑
# =========================
@app.exception_handler(DiaryError)
def handle_diary_error(request: Request, exc: DiaryError):
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", exc.kind, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())

@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    loc = errors[0].get("loc", ()) if errors else ()
    field = ".".join(str(x) for x in loc if x != "body") or "body"
    msg = errors[0].get("msg", "invalid input") if errors else "invalid input"
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "validation_error", "field": field, "message": f"{field}: {msg}"},
    )

@app.exception_handler(Exception)
def handle_unexpected(request: Request, exc: Exception):
    logger.exception("unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": str(exc)},
    )

# =========================
# 의존 객체 (테스트에서 교체)
# =========================
def now_local() -> datetime:
    return datetime.now(ZoneInfo(DIARY_TZ))

def get_calendar() -> LunarCalendarAdapter:
    return LunarCalendarAdapter(DIARY_TZ)

def get_llm_client() -> DiaryLLMClient:
    return DiaryLLMClient(
        api_key=os.environ.get("OPENAI_API_KEY"),
        model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
        timeout=float(os.environ.get("OPENAI_TIMEOUT", "30")),
        max_tokens=int(os.environ.get("OPENAI_MAX_TOKENS", "1000")),
    )

# -------------------------
# 요청 스키마
# -------------------------
class UserProfile(BaseModel):
    birthDate: str | None = None            # "YYYY-MM-DD"
    birthTime: str | None = None            # "HH:MM" (선택)
    gender: str | None = None
    nickname: str | None = None

class BiorhythmIn(BaseModel):
    p: int = Field(ge=-100, le=100)
    e: int = Field(ge=-100, le=100)
    i: int = Field(ge=-100, le=100)

class DiaryEntry(BaseModel):
    emoji: str = ""
    mood: str | None = None
    type: Literal["past", "future"] = "past"
    event: str = ""
    intuition: str | None = None

class AnalyzeRequest(BaseModel):
    userProfile: UserProfile | None = None
    biorhythm: BiorhythmIn | None = None
    entry: DiaryEntry | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "userProfile": {"birthDate": "1990-05-15", "birthTime": "08:30", "nickname": "ゆき"},
                "biorhythm": {"p": 40, "e": -20, "i": 75},
                "entry": {
                    "emoji": "😊", "mood": "穏やか", "type": "past",
                    "event": "朝のコーヒーが美味しかった", "intuition": "新しい出会い",
                },
            }
        }
    )

class PlaceholderRequest(BaseModel):
    timeOfDay: str | None = None

def _parse_birth_date(raw: str | None, field: str = "userProfile.birthDate") -> date:
    if not raw:
        raise InputValidationError(field)
    try:
        return datetime.strptime(raw.strip(), "%Y-%m-%d").date()
    except ValueError:
        raise InputValidationError(field, f"{field} must be YYYY-MM-DD: {raw}")

def _validate_analyze(req: AnalyzeRequest) -> date:
    """필수 필드 검증. 실패 시 아무것도 계산하지 않는다."""
    if req.userProfile is None or not req.userProfile.birthDate:
        raise InputValidationError("userProfile.birthDate")
    if req.biorhythm is None:
        raise InputValidationError("biorhythm")
    if req.entry is None:
        raise InputValidationError("entry")
    return _parse_birth_date(req.userProfile.birthDate)

@app.get("/health")
def health():
    return {"ok": True}

@app.get("/api/biorhythm")
def biorhythm(birthDate: str | None = None):
    birth = _parse_birth_date(birthDate, "birthDate")
    now = now_local()
    bio = compute_biorhythm(birth, now)
    return {
        "success": True,
        "data": {
            "p": bio.p, "e": bio.e, "i": bio.i,
            "average": round(bio.average, 1),
            "energy": energy_label(bio.average),
            "timeOfDay": time_of_day(now),
            "date": now.date().isoformat(),
        },
    }

@app.post("/api/analyze")
def analyze(req: AnalyzeRequest):
    # 1) 입력값 검증
    birth = _validate_analyze(req)
    profile = req.userProfile.model_dump()
    entry = req.entry.model_dump()

    # 2) 키가 없으면 계산 전에 중단
    llm = get_llm_client()
    llm.ensure_configured()

    # 평가 시각은 한 번만 읽는다
    now = now_local()

    # 3) 기둥 (시각 미입력 → 12:00 폴백, 시주 생략)
    btime = parse_birth_time(req.userProfile.birthTime)
    calendar = get_calendar()
    birth_pillars = calendar.pillars_at(birth_instant(birth, btime, DIARY_TZ), include_hour=btime is not None)
    today_pillars = calendar.pillars_at(now)

    # 4) 피처 계산
    features = compute_diary_features(
        birth_pillars, today_pillars, birth, now, req.entry.emoji,
        mood_text=req.entry.mood,
        has_birth_time=btime is not None,
    )
    reported = req.biorhythm
    if (reported.p, reported.e, reported.i) != (features.biorhythm.p, features.biorhythm.e, features.biorhythm.i):
        logger.info("client biorhythm %s differs from server %s; using server values",
                    reported.model_dump(), features.biorhythm)
    logger.info(
        "analyze: mood=%s energy=%s scores=%s color=%s/%s distance=%s",
        features.mood_bucket, features.energy, features.theme_scores,
        features.today_hints["color"]["element"], features.today_hints["color"]["tier"],
        features.today_hints["distance"]["band"],
    )

    # 5) 언어모델 (실패 시 DiaryError → 핸들러)
    prompt = build_diary_prompt(features, profile, entry)
    message = llm.generate(prompt)

    return {"success": True, "data": {**message, **features.to_payload()}}

@app.post("/api/placeholders")
def placeholders(req: PlaceholderRequest):
    tod = req.timeOfDay or time_of_day(now_local())
    return {"success": True, "placeholders": get_llm_client().generate_placeholders(tod)}

# -------------------------
# Entrypoint
# -------------------------
if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("api_server:app", host="0.0.0.0", port=port, reload=True)

# 운영 환경에서는 debug 엔드포인트 비활성화
if os.environ.get("ENV") != "production":
    @app.get("/debug/env")
    def debug_env():
        key = os.environ.get("OPENAI_API_KEY")
        return {
            "has_api_key": bool(key),
            "model": os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            "tz": DIARY_TZ,
        }
else:
    @app.get("/debug/env")
    def debug_env():
        return {"message": "Debug endpoint disabled in production"}
